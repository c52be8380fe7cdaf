"""Attribute and attribute value types.

A value is one of four variants, discriminated by ``kind``:

    string   plain string
    scoped   value + scope, rendered ``value@scope``
    bytes    opaque binary content
    empty    a null or zero-length marker

Empty markers are real values. They travel through the graph like any other
value and are never coerced into an empty string.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field


class EmptyType(StrEnum):
    NULL = "null"
    ZERO_LENGTH = "zero_length"


class StringValue(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["string"] = "string"
    value: str

    def __str__(self) -> str:
        return self.value


class ScopedStringValue(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["scoped"] = "scoped"
    value: str
    scope: str

    def __str__(self) -> str:
        return f"{self.value}@{self.scope}"


class ByteValue(BaseModel):
    """Opaque value. Identifier connectors never derive from these."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["bytes"] = "bytes"
    value: bytes

    def __str__(self) -> str:
        return self.value.hex()


class EmptyValue(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["empty"] = "empty"
    empty_type: EmptyType

    def __str__(self) -> str:
        return f"<{self.empty_type.value}>"


AttributeValue = Annotated[
    StringValue | ScopedStringValue | ByteValue | EmptyValue,
    Field(discriminator="kind"),
]

NULL_VALUE = EmptyValue(empty_type=EmptyType.NULL)
ZERO_LENGTH_VALUE = EmptyValue(empty_type=EmptyType.ZERO_LENGTH)


def string_value(value: str | None) -> StringValue | EmptyValue:
    """Wrap a raw string, mapping None and "" to the matching empty marker."""
    if value is None:
        return NULL_VALUE
    if value == "":
        return ZERO_LENGTH_VALUE
    return StringValue(value=value)


class Attribute(BaseModel):
    """A named, ordered sequence of values."""

    id: str
    values: list[AttributeValue] = Field(default_factory=list)
    display_names: dict[str, str] = Field(default_factory=dict)
    display_descriptions: dict[str, str] = Field(default_factory=dict)

    def string_values(self) -> list[str]:
        """Plain string content of the values that carry any."""
        return [v.value for v in self.values if isinstance(v, StringValue)]
