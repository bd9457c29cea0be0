from __future__ import annotations

from typing import Any, Iterable, List, Literal, Optional, Sequence, Type, TypeVar

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import DomainValidationError

# Records as handed over by the web layer. Document-store ids ("_id"), the
# legacy field names ("sem", "no_of_hours_per_week", "type", ...) and any
# extra bookkeeping fields (owner ids, timestamps) are accepted.

R = TypeVar("R", bound=BaseModel)


def _as_id(v: Any) -> str:
    if v is None:
        raise ValueError("id is required")
    v = str(v).strip()
    if not v:
        raise ValueError("id must be a non-empty string")
    return v


class _Record(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True, frozen=True)


class FacultyRecord(_Record):
    id: str = Field(validation_alias=AliasChoices("id", "_id"))
    name: str = ""

    @field_validator("id", mode="before")
    @classmethod
    def _id(cls, v: Any) -> str:
        return _as_id(v)


class SubjectRecord(_Record):
    id: str = Field(validation_alias=AliasChoices("id", "_id"))
    name: str = ""
    semester: Optional[int] = Field(default=None, validation_alias=AliasChoices("semester", "sem"))
    weekly_hours: int = Field(validation_alias=AliasChoices("weekly_hours", "no_of_hours_per_week"))
    kind: Literal["theory", "lab"] = Field(default="theory", validation_alias=AliasChoices("kind", "type"))

    @field_validator("id", mode="before")
    @classmethod
    def _id(cls, v: Any) -> str:
        return _as_id(v)

    @field_validator("kind", mode="before")
    @classmethod
    def _kind(cls, v: Any) -> str:
        if v is None:
            return "theory"
        return str(v).strip().lower()

    @field_validator("weekly_hours")
    @classmethod
    def _hours_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("must be a positive integer")
        return v


class ClassRecord(_Record):
    id: str = Field(validation_alias=AliasChoices("id", "_id"))
    name: str = ""
    semester: Optional[int] = Field(default=None, validation_alias=AliasChoices("semester", "sem"))
    section: str = ""
    days_per_week: Optional[int] = None
    combo_ids: List[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("combo_ids", "assigned_teacher_subject_combos"),
    )
    total_class_hours: Optional[int] = None

    @field_validator("id", mode="before")
    @classmethod
    def _id(cls, v: Any) -> str:
        return _as_id(v)

    @field_validator("combo_ids", mode="before")
    @classmethod
    def _combo_ids(cls, v: Any) -> List[str]:
        if v is None:
            return []
        if not isinstance(v, (list, tuple)):
            raise ValueError("must be an array of combo ids")
        return [_as_id(x) for x in v]


class ComboRecord(_Record):
    id: str = Field(validation_alias=AliasChoices("id", "_id"))
    faculty_id: str
    subject_id: str
    class_id: str
    name: str = Field(default="", validation_alias=AliasChoices("name", "combo_name"))

    @field_validator("id", "faculty_id", "subject_id", "class_id", mode="before")
    @classmethod
    def _ids(cls, v: Any) -> str:
        return _as_id(v)


class FixedSlotRecord(_Record):
    combo_id: str = Field(validation_alias=AliasChoices("combo_id", "combo"))
    day: int
    hour: int
    class_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("class_id", "class"))

    @field_validator("combo_id", mode="before")
    @classmethod
    def _combo(cls, v: Any) -> str:
        return _as_id(v)

    @field_validator("class_id", mode="before")
    @classmethod
    def _class(cls, v: Any) -> Optional[str]:
        return None if v is None else _as_id(v)

    @field_validator("day", "hour")
    @classmethod
    def _non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("must be a non-negative integer")
        return v


def parse_records(model: Type[R], items: Optional[Iterable[Any]]) -> List[R]:
    """
    Validates a collection of raw records into ``model`` instances.
    Fixed slots may also be given as ``(combo_id, day, hour)`` triples.
    """
    out: List[R] = []
    for idx, item in enumerate(items or []):
        if isinstance(item, model):
            out.append(item)
            continue
        if model is FixedSlotRecord and isinstance(item, Sequence) and not isinstance(item, (str, bytes)):
            item = dict(zip(("combo_id", "day", "hour"), item))
        try:
            out.append(model.model_validate(item))
        except ValidationError as e:
            errors = [{"loc": [idx, *err["loc"]], "msg": err["msg"]} for err in e.errors()]
            raise DomainValidationError(
                f"invalid {model.__name__} at index {idx}",
                reason="invalid_input",
                details=errors,
            ) from e
    return out
