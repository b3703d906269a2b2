"""
引擎常量（限流 / 熔断 / hint 置信度 / 选择器修复）。

可被 config.yaml 覆盖的值在 config 模块中读取，这里只保留默认值。
"""

# --- Rate limits ---

MAX_ACTIONS_PER_MINUTE = 8
MAX_APPLICATIONS_PER_SESSION = 15
MAX_EXTRACTIONS_PER_SESSION = 75
MAX_SEARCH_PAGES = 5

# --- Circuit breaker ---

BREAKER_FAILURE_THRESHOLD = 3
BREAKER_RESET_TIMEOUT_MS = 60_000

# --- Human behavior timing (ms) ---

HUMAN_DELAY_MIN = 800
HUMAN_DELAY_MAX = 2500
HUMAN_READING_PAUSE_PER_SENTENCE = 350
BETWEEN_LISTINGS_MIN = 5000
BETWEEN_LISTINGS_MAX = 15000
BETWEEN_APPLICATIONS_MIN = 30000
BETWEEN_APPLICATIONS_MAX = 90000
IDLE_CHANCE = 0.1
IDLE_MIN = 3000
IDLE_MAX = 10000

# --- Hint confidence ---

HINT_CONFIDENCE_THRESHOLD = 0.7
HINT_DEFAULT_CONFIDENCE = 0.8
HINT_SELECTOR_TIMEOUT = 3000

# --- Selector healing ---

SELECTOR_SNAPSHOT_MAX_LENGTH = 8000
SELECTOR_SNAPSHOT_MIN_LENGTH = 50
SELECTOR_MAX_CANDIDATE_LENGTH = 200
SELECTOR_CACHE_MIN_CONFIDENCE = 0.6
SELECTOR_CACHE_MAX_FAILURES = 5
SELECTOR_CONFIDENCE_BOOST = 0.05
SELECTOR_CONFIDENCE_PENALTY = 0.15
SELECTOR_CACHE_VERSION = 1

# --- Worker waits (seconds) ---

LOGIN_WAIT_TIMEOUT_SECONDS = 5 * 60
LOGIN_POLL_INTERVAL_SECONDS = 3.0
QUESTION_TIMEOUT_SECONDS = 5 * 60
