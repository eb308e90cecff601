"""Shared constants used across hachart layers.

Reserved generator keys and defaults live here so the guards, the fetch
engines and the hub agree on a single set of names.
"""

# Reserved keys: a dict node carrying one of these is a generator.
# Classification order when several are present: history, statistics, data, entity.
KEY_HISTORY = "$history"
KEY_STATISTICS = "$statistics"
KEY_DATA = "$data"
KEY_ENTITY = "$entity"

GENERATOR_PRIORITY: tuple[str, ...] = (KEY_HISTORY, KEY_STATISTICS, KEY_DATA, KEY_ENTITY)

# Bool coercion vocabularies (matched case-insensitively after strip)
TRUTHY_STRINGS: frozenset[str] = frozenset({"on", "true", "1", "yes", "home", "open"})
FALSY_STRINGS: frozenset[str] = frozenset({"off", "false", "0", "no", "not_home", "closed"})

# States treated as "no data" by $data generators
UNAVAILABLE_STATES: frozenset[str] = frozenset({"unavailable", "unknown"})

# Fingerprint recorded for watched entities that are absent from the store
MISSING_FINGERPRINT = "missing"

# History defaults
HISTORY_DEFAULT_CACHE_SECONDS = 30
HISTORY_DEFAULT_HOURS = 24
HISTORY_DEFAULT_SERIES_TYPE = "line"

# Statistics defaults: long-term statistics change slowly
STATISTICS_DEFAULT_CACHE_SECONDS = 300
STATISTICS_DEFAULT_DAYS = 14
STATISTICS_DEFAULT_PERIOD = "day"
STATISTICS_DEFAULT_STAT_TYPE = "change"
STATISTICS_DEFAULT_SERIES_TYPE = "bar"

STATISTIC_TYPES: tuple[str, ...] = ("mean", "min", "max", "sum", "change", "state")
STATISTIC_PERIODS: tuple[str, ...] = ("5minute", "hour", "day", "week", "month")

# Epoch values below this are seconds, not milliseconds
EPOCH_MS_THRESHOLD = 1e12

# Debug preview default length
DEBUG_MAX_CHARS = 20000
