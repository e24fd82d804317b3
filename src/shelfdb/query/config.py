"""
Query Configuration

Defaults for the query translator and cursor engine.
"""

from shelfdb.engine.config import MAX_COUNT

# Accumulator slot per operator
OPERATOR_SLOTS = {
    "==": "exact",
    ">=": "lower",
    ">": "lower_open",
    "<=": "upper",
    "<": "upper_open",
}

DEFAULT_SKIP = 0
DEFAULT_LIMIT = MAX_COUNT
DEFAULT_DIRECTION = "asc"
DIRECTIONS = ("asc", "desc")
