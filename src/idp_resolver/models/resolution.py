"""Per-request resolution inputs and plugin outcomes."""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, Field

from idp_resolver.models.attributes import Attribute


class ResolutionContext(BaseModel):
    """What a protocol front-end hands the resolver, and what it gets back.

    ``principal_attributes`` are attributes already established during
    authentication; they are opaque inputs to the resolver.
    """

    principal: str | None = None
    idp_id: str | None = None
    rp_id: str | None = None
    requested_attribute_ids: list[str] = Field(default_factory=list)
    principal_attributes: dict[str, Attribute] = Field(default_factory=dict)
    resolved_attributes: dict[str, Attribute] = Field(default_factory=dict)


class OutcomeKind(StrEnum):
    RESOLVED = "resolved"
    ABSENT = "absent"
    FAILED = "failed"


class PluginOutcome(BaseModel):
    """Result of visiting one plugin during one request.

    Attribute definitions produce at most one attribute (keyed by their own id);
    data connectors may produce several.
    """

    plugin_id: str
    kind: OutcomeKind
    attributes: dict[str, Attribute] = Field(default_factory=dict)
    error: str | None = None
    failover_from: str | None = None  # set when this outcome was borrowed from a failover

    @classmethod
    def resolved(cls, plugin_id: str, attributes: dict[str, Attribute]) -> PluginOutcome:
        return cls(plugin_id=plugin_id, kind=OutcomeKind.RESOLVED, attributes=attributes)

    @classmethod
    def absent(cls, plugin_id: str) -> PluginOutcome:
        return cls(plugin_id=plugin_id, kind=OutcomeKind.ABSENT)

    @classmethod
    def failed(cls, plugin_id: str, error: str) -> PluginOutcome:
        return cls(plugin_id=plugin_id, kind=OutcomeKind.FAILED, error=error)

    @property
    def is_resolved(self) -> bool:
        return self.kind == OutcomeKind.RESOLVED
