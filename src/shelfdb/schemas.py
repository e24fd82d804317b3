from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import AliasChoices, BaseModel, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from shelfdb.exceptions import ValidationError

KeyPath = Union[str, List[str]]
Operator = Literal["==", ">", ">=", "<", "<="]


def key_path_name(key_path: KeyPath) -> str:
    """Canonical name for a key path: composite paths are joined with '-'."""
    if isinstance(key_path, str):
        return key_path
    return "-".join(key_path)


def _check_key_path(value: KeyPath) -> KeyPath:
    if isinstance(value, str):
        return value
    if not value or not all(isinstance(part, str) and part for part in value):
        raise ValueError("composite key path must be a non-empty list of field names")
    return list(value)


class IndexDefinition(BaseModel):
    """
    A secondary index declared on a collection.

    A bare string is shorthand for an index of that name over that field.
    """
    name: Optional[str] = None
    key_path: KeyPath = Field(validation_alias=AliasChoices("key_path", "keyPath"))
    unique: bool = False
    multi_entry: bool = Field(default=False, validation_alias=AliasChoices("multi_entry", "multiEntry"))

    @model_validator(mode="before")
    @classmethod
    def _expand_shorthand(cls, data: Any) -> Any:
        if isinstance(data, str):
            return {"name": data, "key_path": data}
        return data

    @field_validator("key_path")
    @classmethod
    def _valid_key_path(cls, value: KeyPath) -> KeyPath:
        return _check_key_path(value)

    @model_validator(mode="after")
    def _derive_name(self) -> "IndexDefinition":
        if not self.name:
            self.name = key_path_name(self.key_path)
        if self.multi_entry and not isinstance(self.key_path, str):
            raise ValueError(f"index '{self.name}': multi_entry requires a single key path")
        return self


class CollectionDefinition(BaseModel):
    """
    A collection declared by the caller before opening the database.
    """
    name: str = Field(min_length=1)
    primary_key: KeyPath = Field(
        validation_alias=AliasChoices("primary_key", "primaryKey", "primaryKeyPath")
    )
    auto_increment: bool = Field(
        default=False, validation_alias=AliasChoices("auto_increment", "autoIncrement")
    )
    indexes: List[IndexDefinition] = Field(default_factory=list)

    @field_validator("primary_key")
    @classmethod
    def _valid_primary_key(cls, value: KeyPath) -> KeyPath:
        return _check_key_path(value)

    @model_validator(mode="after")
    def _check_indexes(self) -> "CollectionDefinition":
        if self.auto_increment and not isinstance(self.primary_key, str):
            raise ValueError(f"collection '{self.name}': auto_increment requires a single primary key path")
        seen = set()
        primary_name = key_path_name(self.primary_key)
        for index in self.indexes:
            if index.name == primary_name:
                raise ValueError(
                    f"collection '{self.name}': index '{index.name}' would shadow the primary key"
                )
            if index.name in seen:
                raise ValueError(f"collection '{self.name}': duplicate index '{index.name}'")
            seen.add(index.name)
        return self

    @property
    def primary_key_name(self) -> str:
        return key_path_name(self.primary_key)

    @property
    def index_names(self) -> List[str]:
        return [index.name for index in self.indexes]

    def get_index(self, name: str) -> Optional[IndexDefinition]:
        for index in self.indexes:
            if index.name == name:
                return index
        return None


class Constraint(BaseModel):
    """One comparison of a field against a value."""
    field: str = Field(min_length=1)
    operator: Operator = Field(validation_alias=AliasChoices("operator", "op"))
    value: Any = None


class SnapshotCollection(BaseModel):
    name: str
    docs: List[Dict[str, Any]] = Field(default_factory=list)


class Snapshot(BaseModel):
    """
    Point-in-time dump of every collection of a database.
    """
    name: str
    version: int = Field(ge=1)
    date: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    collections: List[SnapshotCollection] = Field(
        validation_alias=AliasChoices("collections", "stores")
    )

    def get_collection(self, name: str) -> Optional[SnapshotCollection]:
        for collection in self.collections:
            if collection.name == name:
                return collection
        return None


def _first_error(error: PydanticValidationError) -> str:
    details = error.errors()
    if not details:
        return str(error)
    first = details[0]
    location = ".".join(str(part) for part in first.get("loc", ()))
    return f"{location}: {first.get('msg')}" if location else first.get("msg", str(error))


def load_definitions(declarations) -> List[CollectionDefinition]:
    """
    Normalize schema declarations (dicts or models) into CollectionDefinitions.

    Raises:
        ValidationError: On malformed declarations or duplicate collection names
    """
    definitions = []
    for declaration in declarations or []:
        if isinstance(declaration, CollectionDefinition):
            definitions.append(declaration.model_copy(deep=True))
            continue
        try:
            definitions.append(CollectionDefinition.model_validate(declaration))
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid collection declaration: {_first_error(e)}")
    names = [definition.name for definition in definitions]
    duplicates = sorted({name for name in names if names.count(name) > 1})
    if duplicates:
        raise ValidationError(f"Duplicate collection declarations: {', '.join(duplicates)}")
    return definitions


def load_snapshot(data) -> Snapshot:
    """
    Validate a snapshot payload (dict or Snapshot).

    Raises:
        ValidationError: If name, version or collections are missing or malformed
    """
    if isinstance(data, Snapshot):
        return data
    try:
        return Snapshot.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid snapshot: {_first_error(e)}")


def make_constraint(field: str, operator: str, value: Any) -> Constraint:
    try:
        return Constraint(field=field, operator=operator, value=value)
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid constraint: {_first_error(e)}")
