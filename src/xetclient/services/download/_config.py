"""
Configuration constants for the download engine.

Runtime values come from SDKSettings; these are the defaults and fixed
protocol constants.
"""

# Byte range requested per chunk fetch
DEFAULT_CHUNK_SIZE = 8 * 1024 * 1024  # 8MB

# Shared cap on in-flight chunk fetches per request
DEFAULT_MAX_CONCURRENT_FETCHES = 32

# Attempts per chunk, including the first
DEFAULT_MAX_ATTEMPTS = 5

# Backoff between attempts (seconds)
DEFAULT_INITIAL_BACKOFF = 0.5
DEFAULT_MAX_BACKOFF = 30.0

# Fraction of each backoff delay that is randomized
DEFAULT_BACKOFF_JITTER = 0.5

# Staging files carry this suffix until committed
STAGING_SUFFIX = ".xetpart"

# Read size when hashing a staging file
HASH_BLOCK_SIZE = 1024 * 1024  # 1MB

# CAS read route, relative to the credential's endpoint
CAS_CONTENT_ROUTE = "v1/content"
