"""YAML resolver configuration.

A thin factory over plugin constructor arguments. Example::

    id: main
    connector_timeout: 5
    store:
      path: .idp/identifiers.db
    connectors:
      - type: principal
        id: principal
      - type: stored_id
        id: pairwise
        salt_base64: AAECAwQFBgcICQoLDA0ODw==
        source_attribute_id: principal
        dependencies: [{plugin: principal}]
    definitions:
      - type: simple
        id: pairwiseId
        dependencies: [{plugin: pairwise}]
"""

from __future__ import annotations

import base64
import binascii
from pathlib import Path
from typing import Annotated, Any, Literal

import yaml
from pydantic import BaseModel, Field, model_validator

from idp_resolver.connectors import (
    ComputedIdConnector,
    Derivation,
    MultiValuePolicy,
    PrincipalDataConnector,
    StaticDataConnector,
    StoredIdConnector,
)
from idp_resolver.definitions import (
    MappedAttributeDefinition,
    PrescopedAttributeDefinition,
    RegexSplitAttributeDefinition,
    ScopedAttributeDefinition,
    SimpleAttributeDefinition,
    TemplateAttributeDefinition,
    ValueMap,
)
from idp_resolver.errors import ComponentInitializationError
from idp_resolver.models.attributes import Attribute, string_value
from idp_resolver.plugins.base import AttributeDefinition, DataConnector, Dependency
from idp_resolver.resolver.engine import AttributeResolver
from idp_resolver.storage.base import IdentifierStore

DEFAULT_STORE_PATH = Path(".idp") / "identifiers.db"


class DependencyConfig(BaseModel):
    plugin: str
    attribute: str | None = None


class _PluginConfig(BaseModel):
    id: str
    dependencies: list[DependencyConfig] = Field(default_factory=list)
    propagate_errors: bool | None = None

    def plugin_kwargs(self) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "dependencies": [Dependency(plugin_id=d.plugin, attribute_id=d.attribute) for d in self.dependencies],
        }
        if self.propagate_errors is not None:
            kwargs["propagate_errors"] = self.propagate_errors
        return kwargs


# ----- Attribute definitions -----


class _DefinitionConfig(_PluginConfig):
    dependency_only: bool = False
    source_attribute_id: str | None = None
    display_names: dict[str, str] = Field(default_factory=dict)
    display_descriptions: dict[str, str] = Field(default_factory=dict)

    def plugin_kwargs(self) -> dict[str, Any]:
        return {
            **super().plugin_kwargs(),
            "dependency_only": self.dependency_only,
            "source_attribute_id": self.source_attribute_id,
            "display_names": self.display_names,
            "display_descriptions": self.display_descriptions,
        }


class SimpleDefinitionConfig(_DefinitionConfig):
    type: Literal["simple"]

    def build(self) -> AttributeDefinition:
        return SimpleAttributeDefinition(self.id, **self.plugin_kwargs())


class ScopedDefinitionConfig(_DefinitionConfig):
    type: Literal["scoped"]
    scope: str

    def build(self) -> AttributeDefinition:
        return ScopedAttributeDefinition(self.id, scope=self.scope, **self.plugin_kwargs())


class PrescopedDefinitionConfig(_DefinitionConfig):
    type: Literal["prescoped"]
    scope_delimiter: str = "@"

    def build(self) -> AttributeDefinition:
        return PrescopedAttributeDefinition(self.id, scope_delimiter=self.scope_delimiter, **self.plugin_kwargs())


class RegexSplitDefinitionConfig(_DefinitionConfig):
    type: Literal["regex_split"]
    regexp: str
    case_sensitive: bool = True

    def build(self) -> AttributeDefinition:
        return RegexSplitAttributeDefinition(
            self.id, regexp=self.regexp, case_sensitive=self.case_sensitive, **self.plugin_kwargs()
        )


class TemplateDefinitionConfig(_DefinitionConfig):
    type: Literal["template"]
    template: str
    source_attribute_ids: list[str]

    def build(self) -> AttributeDefinition:
        return TemplateAttributeDefinition(
            self.id,
            template=self.template,
            source_attribute_ids=self.source_attribute_ids,
            **self.plugin_kwargs(),
        )


class MappedDefinitionConfig(_DefinitionConfig):
    type: Literal["mapped"]
    value_maps: list[ValueMap]
    default_value: str | None = None
    pass_through: bool = False

    def build(self) -> AttributeDefinition:
        return MappedAttributeDefinition(
            self.id,
            value_maps=self.value_maps,
            default_value=self.default_value,
            pass_through=self.pass_through,
            **self.plugin_kwargs(),
        )


DefinitionConfig = Annotated[
    SimpleDefinitionConfig
    | ScopedDefinitionConfig
    | PrescopedDefinitionConfig
    | RegexSplitDefinitionConfig
    | TemplateDefinitionConfig
    | MappedDefinitionConfig,
    Field(discriminator="type"),
]


# ----- Data connectors -----


class _ConnectorConfig(_PluginConfig):
    failover_connector_id: str | None = None
    no_retry_delay: float = 0.0
    timeout: float | None = None

    def plugin_kwargs(self) -> dict[str, Any]:
        return {
            **super().plugin_kwargs(),
            "failover_connector_id": self.failover_connector_id,
            "no_retry_delay": self.no_retry_delay,
            "timeout": self.timeout,
        }


class StaticConnectorConfig(_ConnectorConfig):
    type: Literal["static"]
    attributes: dict[str, list[str | None]]

    def build(self, store: IdentifierStore | None) -> DataConnector:
        attributes = [
            Attribute(id=attribute_id, values=[string_value(v) for v in values])
            for attribute_id, values in self.attributes.items()
        ]
        return StaticDataConnector(self.id, attributes=attributes, **self.plugin_kwargs())


class PrincipalConnectorConfig(_ConnectorConfig):
    type: Literal["principal"]
    principal_attribute_id: str = "principal"

    def build(self, store: IdentifierStore | None) -> DataConnector:
        return PrincipalDataConnector(
            self.id, principal_attribute_id=self.principal_attribute_id, **self.plugin_kwargs()
        )


class _IdentifierConnectorConfig(_ConnectorConfig):
    salt: str | None = None
    salt_base64: str | None = None
    source_attribute_id: str | None = None
    generated_attribute_id: str | None = None
    algorithm: str | None = None
    derivation: Derivation = Derivation.LEGACY
    multi_value_policy: MultiValuePolicy = MultiValuePolicy.REJECT

    @model_validator(mode="after")
    def _one_salt(self) -> _IdentifierConnectorConfig:
        if self.salt is not None and self.salt_base64 is not None:
            raise ValueError("configure either 'salt' or 'salt_base64', not both")
        return self

    def salt_bytes(self) -> bytes | None:
        if self.salt_base64 is not None:
            try:
                return base64.b64decode(self.salt_base64, validate=True)
            except binascii.Error as e:
                raise ComponentInitializationError(f"Connector '{self.id}': salt_base64 is not valid base64") from e
        return self.salt.encode("utf-8") if self.salt is not None else None

    def plugin_kwargs(self) -> dict[str, Any]:
        return {
            **super().plugin_kwargs(),
            "salt": self.salt_bytes(),
            "source_attribute_id": self.source_attribute_id,
            "generated_attribute_id": self.generated_attribute_id,
            "algorithm": self.algorithm,
            "derivation": self.derivation,
            "multi_value_policy": self.multi_value_policy,
        }


class ComputedIdConnectorConfig(_IdentifierConnectorConfig):
    type: Literal["computed_id"]

    def build(self, store: IdentifierStore | None) -> DataConnector:
        return ComputedIdConnector(self.id, **self.plugin_kwargs())


class StoredIdConnectorConfig(_IdentifierConnectorConfig):
    type: Literal["stored_id"]

    def build(self, store: IdentifierStore | None) -> DataConnector:
        return StoredIdConnector(self.id, store=store, **self.plugin_kwargs())


ConnectorConfig = Annotated[
    StaticConnectorConfig | PrincipalConnectorConfig | ComputedIdConnectorConfig | StoredIdConnectorConfig,
    Field(discriminator="type"),
]


# ----- Top level -----


class StoreConfig(BaseModel):
    path: Path = DEFAULT_STORE_PATH
    transaction_retries: int = 3
    busy_timeout: float = 5.0


class ResolverConfig(BaseModel):
    id: str = "resolver"
    connector_timeout: float | None = None
    store: StoreConfig = Field(default_factory=StoreConfig)
    definitions: list[DefinitionConfig] = Field(default_factory=list)
    connectors: list[ConnectorConfig] = Field(default_factory=list)

    @property
    def uses_store(self) -> bool:
        return any(isinstance(c, StoredIdConnectorConfig) for c in self.connectors)


def load_resolver_config(path: Path) -> ResolverConfig:
    """Parse and validate a YAML resolver configuration file."""
    data = yaml.safe_load(path.read_text()) or {}
    return ResolverConfig.model_validate(data)


def build_resolver(config: ResolverConfig, store: IdentifierStore | None = None) -> AttributeResolver:
    """Construct, but do not initialize, the configured resolver."""
    return AttributeResolver(
        config.id,
        definitions=[d.build() for d in config.definitions],
        connectors=[c.build(store) for c in config.connectors],
        connector_timeout=config.connector_timeout,
    )
