"""
Constants and configuration values for PR/issue triage.
"""

# Cache Schema
CACHE_SCHEMA_VERSION = 1
CACHE_STALE_MINUTES = 60
CACHE_BODY_SNIPPET_LENGTH = 500

# Default Cache Paths (suffixed with owner-repo at runtime)
DEFAULT_CACHE_PREFIX = ".prtriage-cache"
DEFAULT_ENRICHMENT_CACHE_PREFIX = ".prtriage-enrichment-cache"
DEFAULT_ISSUE_CACHE_PREFIX = ".prtriage-issue-cache"
DEFAULT_ISSUE_ENRICHMENT_CACHE_PREFIX = ".prtriage-issue-enrichment-cache"

# Duplicate Detection
DEFAULT_SIMILARITY_THRESHOLD = 0.82
SIMILAR_ITEMS_LIMIT = 5
SIMILARITY_DECIMALS = 3
RELATED_SIMILARITY_MARGIN = 0.1  # Single-item triage also lists items this far below the threshold

# Quality Scoring (each sub-score ranges 0.0 - 2.5, total 0 - 10)
SUB_SCORE_MAX = 2.5
QUALITY_MAX = 10.0
PARTIAL_QUALITY_CAP = 5.0
DESCRIPTION_BREAKPOINTS = ((300, 2.5), (150, 1.5), (50, 0.5))
DIFF_SIZE_BREAKPOINTS = ((500, 2.5), (2000, 2.0), (5000, 1.0))
SINGLE_TOPIC_BREAKPOINTS = ((3, 2.5), (8, 2.0), (15, 1.0))
SINGLE_TOPIC_FLOOR = 0.5
PATTERN_MATCH_BREAKPOINTS = ((3, 2.5), (2, 1.5), (1, 0.5))
LABEL_BREAKPOINTS = ((2, 2.5), (1, 1.5))

# Decision Thresholds
DUPLICATE_CLOSE_BELOW = 5.0
HIGH_QUALITY_MIN = 8.0
LOW_QUALITY_BELOW = 4.0
ISSUE_HIGH_PRIORITY_MIN = 7.0

# Enrichment
ENRICHMENT_CHECKPOINT_EVERY = 50
PR_FILE_LIST_LIMIT = 50

# GitHub API
GITHUB_API_BASE = "https://api.github.com"
GITHUB_PER_PAGE = 100
GITHUB_RATE_LIMIT_LOW_WATER = 10
GITHUB_RATE_LIMIT_RESET_PAD = 5.0  # Seconds added after the reset timestamp
GITHUB_RATE_LIMIT_MAX_WAIT = 3700.0  # Never sleep longer than ~1h
GITHUB_SECONDARY_RATE_LIMIT_DEFAULT = 60.0
GITHUB_HTTP_TIMEOUT = 30.0
GITHUB_USER_AGENT = "prtriage/0.1"
VISION_DOC_CANDIDATES = ("VISION.md", "README.md")
BATCH_REPORT_LABEL = "prtriage-batch"
ISSUE_BATCH_REPORT_LABEL = "prtriage-issue-batch"
BATCH_REPORT_LABEL_COLOR = "1d76db"

# Embeddings
EMBEDDING_API_BASE = "https://api.openai.com/v1"
EMBEDDING_MODEL = "text-embedding-3-small"
EMBEDDING_BATCH_SIZE = 2048
EMBEDDING_MIN_TEXT_LENGTH = 10
EMBEDDING_MAX_RETRIES = 4
EMBEDDING_HTTP_TIMEOUT = 60.0

# Alignment (LLM judgment)
JUDGMENT_API_BASE = "https://api.anthropic.com/v1"
JUDGMENT_API_VERSION = "2023-06-01"
JUDGMENT_MODEL = "claude-haiku-4-5-20251001"
JUDGMENT_MAX_TOKENS = 200
JUDGMENT_MAX_RETRIES = 4
JUDGMENT_MIN_REQUEST_INTERVAL = 1.0  # Seconds between judgment requests
VISION_DOC_PROMPT_CHARS = 3000
ITEM_BODY_PROMPT_CHARS = 800
PROMPT_FILE_LIMIT = 15
PROMPT_LABEL_LIMIT = 10

# Alignment Batch Polling
ALIGNMENT_POLL_INTERVAL = 30.0
ALIGNMENT_POLL_TIMEOUT = 3600.0  # 60 minutes
ALIGNMENT_MAX_CONSECUTIVE_FAILURES = 5

# Rate Limiting (shared retry backoff)
RATE_LIMIT_ERROR_BACKOFF_BASE = 1.0
RATE_LIMIT_ERROR_BACKOFF_MAX = 30.0
RATE_LIMIT_429_BACKOFF_BASE = 2.0
RATE_LIMIT_429_BACKOFF_MAX = 60.0
HTTP_CONNECT_TIMEOUT = 10.0
HTTP_READ_TIMEOUT = 60.0
HTTP_WRITE_TIMEOUT = 10.0
HTTP_POOL_TIMEOUT = 5.0

# Report Rendering
GITHUB_BODY_LIMIT = 65536
SECTION_ROW_LIMIT = 50
REPORT_SLACK_CHARS = 1000
REASON_MAX_CHARS = 120
SECTION_TITLE_MAX_CHARS = 100
FULL_TABLE_RESERVE_CHARS = 1000
REPORT_LABEL_LIMIT = 3
