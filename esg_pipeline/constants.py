"""
Global constants for the extraction pipeline.

Centralizes magic numbers and thresholds used by the recovery engine,
the normalizer and the batch coordinator.
"""

# Model and Request Defaults
DEFAULT_MODEL = "claude-3-7-sonnet-20250219"
DEFAULT_MAX_TOKENS = 4000  # Output token cap per extraction request
DEFAULT_TEMPERATURE = 0.2  # Low temperature keeps JSON formatting stable
DEFAULT_REQUEST_TIMEOUT_SECONDS = 60.0  # Per-request HTTP timeout
WEBSITE_FETCH_TIMEOUT_SECONDS = 30.0  # Website content fetch timeout

# Concurrency and Batching
DEFAULT_MAX_CONCURRENCY = 3  # Parallel direct extractions
DEFAULT_BATCH_SIZE = 50  # Records per upstream batch job
DEFAULT_BATCH_CHECK_INTERVAL_MINUTES = 15  # Monitor polling cadence

# Retry Configuration
DEFAULT_MAX_RETRIES = 3  # Retries after the first attempt
DEFAULT_INITIAL_DELAY_MS = 2000  # First backoff delay (doubles + jitter each retry)
MAX_JITTER_MS = 1000  # Upper bound of random jitter added per retry

# Response Recovery
MIN_SUBSTANTIVE_LENGTH = 50  # Brace spans at or below this are ignored by scan strategies
ORIGINAL_TEXT_PREVIEW_CHARS = 500  # Text kept on total recovery failure
EMPTY_TEXT_PREVIEW_CHARS = 100  # Text kept when input is blank/invalid
RAW_RESPONSE_PREVIEW_CHARS = 1000  # Raw text kept in fallback records
REPAIR_WARNING = "JSON was repaired and might be incomplete or contain errors"

# Record Schema
MAX_ACTIONS_PER_CRITERION = 5  # Bullet points kept per criterion
ACTION_BULLET_PREFIX = "# "
CARBON_SCOPES = ("scope1", "scope2", "scope3", "total")
CARBON_YEARS = ("2022", "2023", "2024")
DEFAULT_CARBON_YEAR = "2023"  # Used when a legacy value carries no "(YYYY)" suffix
CLIMATE_STANDARD_KEYS = ("iso14001", "iso50001", "emas", "cdp", "sbti")

# Batch Lifecycle
BATCH_EXPIRY_HOURS = 24  # Upstream expires unfinished batch jobs after this
BATCH_WARNING_HOURS = 22  # Monitor warns once a running job is this old
BATCH_COST_DISCOUNT = 0.5  # Batch usage billed at half price
