"""Attribute values, identifier records, and resolution context models."""

from idp_resolver.models.attributes import (
    NULL_VALUE,
    ZERO_LENGTH_VALUE,
    Attribute,
    AttributeValue,
    ByteValue,
    EmptyType,
    EmptyValue,
    ScopedStringValue,
    StringValue,
    string_value,
)
from idp_resolver.models.identifiers import IdentifierRecord
from idp_resolver.models.resolution import OutcomeKind, PluginOutcome, ResolutionContext

__all__ = [
    "NULL_VALUE",
    "ZERO_LENGTH_VALUE",
    "Attribute",
    "AttributeValue",
    "ByteValue",
    "EmptyType",
    "EmptyValue",
    "IdentifierRecord",
    "OutcomeKind",
    "PluginOutcome",
    "ResolutionContext",
    "ScopedStringValue",
    "StringValue",
    "string_value",
]
