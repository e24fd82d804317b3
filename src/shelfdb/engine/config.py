"""
Engine Configuration

Centralized configuration for the embedded storage engine.
"""

# Connection settings
DEFAULT_TIMEOUT = 5.0
ENABLE_WAL_MODE = True

# Upper bound for get_all / count style requests
MAX_COUNT = 2 ** 32

# Rows pulled from SQLite per cursor refill
CURSOR_FETCH_SIZE = 256

# Catalog tables
META_TABLE = "shelf_meta"
COLLECTIONS_TABLE = "shelf_collections"
INDEXES_TABLE = "shelf_indexes"

# Engine file format version (independent from the user database version)
FORMAT_VERSION = "1"
