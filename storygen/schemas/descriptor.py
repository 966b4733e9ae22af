"""Content descriptor, free-text labels and the descriptor fingerprint.

The fingerprint is the single lookup key for caching and deduplication. It is
an MD5 (128-bit) digest over the four descriptor fields and nothing else.
"""

import hashlib
from typing import Any, Mapping, Union

from pydantic import BaseModel, ConfigDict, Field, StrictInt, StrictStr
from pydantic import ValidationError as PydanticValidationError

from storygen.errors import ValidationError

MIN_LEVEL = 1
MAX_LEVEL = 12


def _raise_validation_error(exc: PydanticValidationError) -> None:
    first = exc.errors()[0]
    field = ".".join(str(part) for part in first.get("loc", ())) or None
    raise ValidationError(f"Invalid {field or 'input'}: {first.get('msg')}", field=field) from exc


class Descriptor(BaseModel):
    """Four-field identifier of a content item. Immutable."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    subject_id: StrictInt = Field(ge=1)
    chapter_id: StrictInt = Field(ge=1)
    topic_id: StrictInt = Field(ge=1)
    level: StrictInt = Field(ge=MIN_LEVEL, le=MAX_LEVEL)

    @classmethod
    def parse(cls, value: Union["Descriptor", Mapping[str, Any]]) -> "Descriptor":
        """Return a validated Descriptor, raising storygen ValidationError on bad input."""
        if isinstance(value, cls):
            return value
        try:
            return cls.model_validate(value)
        except PydanticValidationError as exc:
            _raise_validation_error(exc)

    @property
    def fingerprint(self) -> str:
        return fingerprint(self)


class Labels(BaseModel):
    """Free-text names for the descriptor's chapter, topic and subject."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    chapter: StrictStr = Field(min_length=1)
    topic: StrictStr = Field(min_length=1)
    subject: StrictStr = Field(min_length=1)

    @classmethod
    def parse(cls, value: Union["Labels", Mapping[str, Any]]) -> "Labels":
        if isinstance(value, cls):
            return value
        try:
            return cls.model_validate(value)
        except PydanticValidationError as exc:
            _raise_validation_error(exc)


def fingerprint(descriptor: Descriptor) -> str:
    """Deterministic hex digest of the descriptor's four fields."""
    combined = (
        f"{descriptor.chapter_id}-{descriptor.topic_id}-"
        f"{descriptor.subject_id}-{descriptor.level}"
    )
    return hashlib.md5(combined.encode("utf-8")).hexdigest()
