"""
Query Cache Global Constants

Centralized location for constants shared across the cache layer.
"""

# Default time to live in seconds. Zero disables storage unless a model
# rule overrides it; concurrent identical reads are still deduplicated.
DEFAULT_CACHE_TIME = 0

# Separator between the tag key and the serialized call key
TAG_SEPARATOR = "~"

# Wildcard used by tag stores for pattern deletion
WILDCARD = "*"

# Application Constants
APP_VERSION = "0.1.0"
