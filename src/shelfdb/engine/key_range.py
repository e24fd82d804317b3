"""
Key ranges over encoded keys.
"""

from dataclasses import dataclass
from typing import Any, List, Optional, Tuple

from shelfdb.exceptions import DataError
from shelfdb.engine.keys import encode_key, validate_key


@dataclass(frozen=True)
class KeyRange:
    """
    A continuous interval over keys.

    A bound of None means the range is unbounded on that side.
    """
    lower: Optional[Any] = None
    upper: Optional[Any] = None
    lower_open: bool = False
    upper_open: bool = False

    def __post_init__(self):
        if self.lower is not None and self.upper is not None:
            lo, hi = encode_key(self.lower), encode_key(self.upper)
            if lo > hi or (lo == hi and (self.lower_open or self.upper_open)):
                raise DataError(
                    f"Empty key range: lower {self.lower!r} is not below upper {self.upper!r}"
                )

    @classmethod
    def only(cls, value: Any) -> "KeyRange":
        value = validate_key(value)
        return cls(lower=value, upper=value)

    @classmethod
    def lower_bound(cls, value: Any, open: bool = False) -> "KeyRange":
        return cls(lower=validate_key(value), lower_open=open)

    @classmethod
    def upper_bound(cls, value: Any, open: bool = False) -> "KeyRange":
        return cls(upper=validate_key(value), upper_open=open)

    @classmethod
    def bound(cls, lower: Any, upper: Any, lower_open: bool = False, upper_open: bool = False) -> "KeyRange":
        return cls(
            lower=validate_key(lower),
            upper=validate_key(upper),
            lower_open=lower_open,
            upper_open=upper_open,
        )

    @property
    def is_single_point(self) -> bool:
        return (
            self.lower is not None
            and self.upper is not None
            and not self.lower_open
            and not self.upper_open
            and encode_key(self.lower) == encode_key(self.upper)
        )

    def includes(self, key: Any) -> bool:
        """True if key lies inside the range."""
        encoded = encode_key(key)
        if self.lower is not None:
            lo = encode_key(self.lower)
            if encoded < lo or (self.lower_open and encoded == lo):
                return False
        if self.upper is not None:
            hi = encode_key(self.upper)
            if encoded > hi or (self.upper_open and encoded == hi):
                return False
        return True

    def to_sql(self, column: str) -> Tuple[str, List[bytes]]:
        """
        Render the range as a WHERE fragment over an encoded-key column.

        Returns:
            (clause, params); clause is "1" for an unbounded range
        """
        clauses = []
        params: List[bytes] = []
        if self.is_single_point:
            return f"{column} = ?", [encode_key(self.lower)]
        if self.lower is not None:
            clauses.append(f"{column} {'>' if self.lower_open else '>='} ?")
            params.append(encode_key(self.lower))
        if self.upper is not None:
            clauses.append(f"{column} {'<' if self.upper_open else '<='} ?")
            params.append(encode_key(self.upper))
        if not clauses:
            return "1", []
        return " AND ".join(clauses), params


def as_key_range(query: Any) -> Optional[KeyRange]:
    """Coerce a key or KeyRange into a KeyRange (None stays None)."""
    if query is None or isinstance(query, KeyRange):
        return query
    return KeyRange.only(query)
