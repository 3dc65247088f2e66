"""Shared constants for the mashlab analysis pipeline."""

# Audio processing constants
TARGET_SAMPLE_RATE = 22050
"""Sample rate every signal is resampled to before analysis (Hz)."""

QUICK_WINDOW_SECONDS = 15.0
"""Length of the centred analysis window in quick mode."""

FULL_WINDOW_SECONDS = 30.0
"""Length of the leading analysis window in full mode."""

HIGH_PRECISION_WINDOW_SECONDS = 45.0
"""Length of the leading analysis window in high-precision mode."""

ONSET_HOP_LENGTH = 512
"""Frame size used by the onset-interval tempo fallback (samples)."""

# Tempo constants
MIN_TEMPO = 60.0
"""Lower bound of the accepted tempo range (BPM)."""

MAX_TEMPO = 200.0
"""Upper bound of the accepted tempo range (BPM)."""

MAX_VALID_BPM = 300.0
"""Largest BPM a stored analysis result may carry."""

DEFAULT_TEMPO = 120.0
"""Tempo reported when too few onsets are found."""

# Tag overrides
TAG_OVERRIDE_THRESHOLD = 0.7
"""Detected confidence below which a tagged BPM or key wins."""

TAG_OVERRIDE_CONFIDENCE = 0.85
"""Confidence assigned to a value taken from tags."""

# Worker pool constants
MAX_EXECUTION_CONTEXTS = 16
"""Hard cap on worker threads in the pool."""

MAX_CONCURRENCY_CAP = 8
"""Hard cap on concurrently processing queue items."""

WORKER_JOIN_TIMEOUT_S = 5.0
"""Timeout for joining worker threads during shutdown."""

# Timeouts
BASE_TIMEOUT_LOCAL_S = 120.0
"""Per-file analysis deadline when running locally."""

BASE_TIMEOUT_DEPLOYED_S = 300.0
"""Per-file analysis deadline in a deployed environment."""

TIMEOUT_STEP_S = 30.0
"""Extra time granted per 10 MB above the first 10 MB."""

MAX_TIMEOUT_S = 600.0
"""Upper bound of the per-file analysis deadline."""

# Watchdog
STUCK_GRACE_SECONDS = 10.0
"""How long an analyzing track may lack a queue entry before it is failed."""

STUCK_ERROR = "Analysis stuck - worker may have crashed. Please try re-uploading this file."
RESTORED_ERROR = "Audio file not available - re-upload to preview"

# Cache
MEMORY_CACHE_LIMIT = 500
"""Entries kept in the in-memory cache tier."""

CACHE_MAX_AGE_DAYS = 30
"""Default age after which durable cache entries are deleted."""

UNCATEGORIZED = "Uncategorized"
"""Folder label for tracks without a folder path."""
