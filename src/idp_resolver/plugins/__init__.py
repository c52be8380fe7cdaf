"""Resolver plugins, the nodes of the attribute dependency graph."""

from idp_resolver.plugins.base import (
    ActivationCondition,
    AttributeDefinition,
    DataConnector,
    Dependency,
    PluginKind,
    ResolverPlugin,
)

__all__ = [
    "ActivationCondition",
    "AttributeDefinition",
    "DataConnector",
    "Dependency",
    "PluginKind",
    "ResolverPlugin",
]
