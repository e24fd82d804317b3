"""
Key Range Translator

Compiles field/operator/value constraints into one KeyRange and resolves the
index (if any) the query runs against.

Folding rules:
- Constraints are folded left to right into five slots: exact, lower
  inclusive, lower exclusive, upper inclusive, upper exclusive.
- A repeated operator overwrites the earlier value (last write wins).
- An exact value wins over any bounds and gives a single-point range.
- Lower and upper bounds give a bounded range; one side gives a one-sided
  range; no constraint gives an unbounded scan.
"""

from dataclasses import dataclass
from typing import Any, Iterable, List, Optional, Sequence, Union

from shelfdb.logging_config import logger
from shelfdb.exceptions import NotFoundError, ValidationError
from shelfdb.engine.key_range import KeyRange
from shelfdb.schemas import Constraint, make_constraint
from shelfdb.query.config import OPERATOR_SLOTS

PRIMARY_KEY = ""

ConstraintInput = Union[Constraint, dict, Sequence[Union[Constraint, dict]], None]


def where(field: str, op: str, value: Any) -> Constraint:
    """
    Build a constraint.

    Example:
        where("email", "==", "a@x.com")
        where("age", ">=", 18)
    """
    return make_constraint(field, op, value)


@dataclass(frozen=True)
class TranslatedQuery:
    """
    Result of translating constraints.

    Attributes:
        index_name: Index to query, or "" for the primary key space
        key_range: Range to scan, None for a full scan
    """
    index_name: str = PRIMARY_KEY
    key_range: Optional[KeyRange] = None

    @property
    def uses_primary_key(self) -> bool:
        return self.index_name == PRIMARY_KEY


def normalize_constraints(constraints: ConstraintInput) -> List[Constraint]:
    """Accept a single constraint, a list of them, or dict forms."""
    if constraints is None:
        return []
    if isinstance(constraints, (Constraint, dict)):
        constraints = [constraints]
    normalized = []
    for item in constraints:
        if isinstance(item, Constraint):
            normalized.append(item)
        elif isinstance(item, dict):
            normalized.append(make_constraint(
                item.get("field"), item.get("operator", item.get("op")), item.get("value")
            ))
        else:
            raise ValidationError(f"Expected a constraint, got {type(item).__name__}")
    return normalized


def _fold(constraints: List[Constraint]) -> dict:
    slots = {}
    for constraint in constraints:
        slot = OPERATOR_SLOTS[constraint.operator]
        if constraint.value is None:
            raise ValidationError(f"Constraint on '{constraint.field}' has no value")
        if slot in slots:
            logger.debug(
                f"Constraint {constraint.field} {constraint.operator} {constraint.value!r} "
                f"overrides earlier value {slots[slot]!r}"
            )
        slots[slot] = constraint.value
    return slots


def build_key_range(constraints: List[Constraint]) -> Optional[KeyRange]:
    """Fold constraints on one field into a KeyRange (None for a full scan)."""
    slots = _fold(constraints)
    if "exact" in slots:
        return KeyRange.only(slots["exact"])

    has_lower = "lower" in slots or "lower_open" in slots
    has_upper = "upper" in slots or "upper_open" in slots
    lower = slots.get("lower", slots.get("lower_open"))
    upper = slots.get("upper", slots.get("upper_open"))
    lower_open = "lower_open" in slots
    upper_open = "upper_open" in slots

    if has_lower and has_upper:
        return KeyRange.bound(lower, upper, lower_open, upper_open)
    if has_lower:
        return KeyRange.lower_bound(lower, lower_open)
    if has_upper:
        return KeyRange.upper_bound(upper, upper_open)
    return None


def resolve_index(field: str, primary_key: str, index_names: Iterable[str]) -> str:
    """
    Map a constrained field to an index name.

    The primary key path always means the primary key space.

    Raises:
        NotFoundError: If no index of that name exists
    """
    if field == primary_key:
        return PRIMARY_KEY
    if field in set(index_names):
        return field
    raise NotFoundError(f"Index '{field}' not found")


def translate(constraints: ConstraintInput, primary_key: str, index_names: Iterable[str]) -> TranslatedQuery:
    """
    Translate constraints into the index to scan and the range to scan.

    Args:
        constraints: One constraint, a list, or None
        primary_key: Canonical primary key name of the collection
        index_names: Names of the collection's live indexes

    Raises:
        ValidationError: If constraints name more than one field
        NotFoundError: If the field is neither the primary key nor an index
    """
    normalized = normalize_constraints(constraints)
    if not normalized:
        return TranslatedQuery()

    fields = {constraint.field for constraint in normalized}
    if len(fields) > 1:
        raise ValidationError(
            f"A query can use one index only; constraints name {sorted(fields)}"
        )
    field = normalized[0].field
    return TranslatedQuery(
        index_name=resolve_index(field, primary_key, index_names),
        key_range=build_key_range(normalized),
    )
