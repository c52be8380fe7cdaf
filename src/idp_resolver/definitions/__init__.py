"""Attribute definitions: pure functions over other plugins' outputs."""

from idp_resolver.definitions.mapped import MappedAttributeDefinition, SourceValue, ValueMap
from idp_resolver.definitions.regex import RegexSplitAttributeDefinition
from idp_resolver.definitions.scoped import PrescopedAttributeDefinition, ScopedAttributeDefinition
from idp_resolver.definitions.simple import SimpleAttributeDefinition
from idp_resolver.definitions.template import TemplateAttributeDefinition

__all__ = [
    "MappedAttributeDefinition",
    "PrescopedAttributeDefinition",
    "RegexSplitAttributeDefinition",
    "ScopedAttributeDefinition",
    "SimpleAttributeDefinition",
    "SourceValue",
    "TemplateAttributeDefinition",
    "ValueMap",
]
