"""Per-request memoization table for the dependency graph walk."""

from __future__ import annotations

from collections.abc import Iterable

from idp_resolver.errors import ResolutionError
from idp_resolver.models.attributes import AttributeValue
from idp_resolver.models.resolution import OutcomeKind, PluginOutcome
from idp_resolver.plugins.base import Dependency


class ResolutionWorkContext:
    """Holds every plugin outcome reached during one request.

    An outcome is recorded exactly once per plugin. ``visiting`` guards the
    current depth-first path against cycles the static check missed.
    """

    def __init__(self) -> None:
        self.resolved: dict[str, PluginOutcome] = {}
        self.visiting: set[str] = set()

    def is_resolved(self, plugin_id: str) -> bool:
        return plugin_id in self.resolved

    def get(self, plugin_id: str) -> PluginOutcome | None:
        return self.resolved.get(plugin_id)

    def record(self, outcome: PluginOutcome) -> None:
        if outcome.plugin_id in self.resolved:
            raise ResolutionError(
                f"The resolution of plugin '{outcome.plugin_id}' has already been recorded"
            )
        self.resolved[outcome.plugin_id] = outcome

    def record_failover(self, failed_id: str, failover_id: str) -> PluginOutcome:
        """Record ``failed_id`` as having produced what ``failover_id`` produced."""
        failover = self.resolved.get(failover_id)
        if failover is None:
            raise ResolutionError(f"The resolution of failover connector '{failover_id}' was not recorded")
        if failover.kind == OutcomeKind.FAILED:
            borrowed = PluginOutcome.failed(failed_id, failover.error or "failover failed")
        else:
            borrowed = PluginOutcome(
                plugin_id=failed_id,
                kind=failover.kind,
                attributes=failover.attributes,
            )
        borrowed.failover_from = failover_id
        self.record(borrowed)
        return borrowed

    def values_for(self, dependency: Dependency) -> list[AttributeValue]:
        """Values one dependency contributes; empty when it was absent or failed."""
        outcome = self.resolved.get(dependency.plugin_id)
        if outcome is None or not outcome.is_resolved:
            return []
        if dependency.attribute_id is None:
            values: list[AttributeValue] = []
            for attribute in outcome.attributes.values():
                values.extend(attribute.values)
            return values
        attribute = outcome.attributes.get(dependency.attribute_id)
        if attribute is None and list(outcome.attributes) == [dependency.plugin_id]:
            # attribute definitions emit a single attribute named after themselves
            attribute = outcome.attributes[dependency.plugin_id]
        return list(attribute.values) if attribute is not None else []

    def merged_values(self, dependencies: Iterable[Dependency]) -> list[AttributeValue]:
        """All values from all dependencies, in dependency order."""
        values: list[AttributeValue] = []
        for dependency in dependencies:
            values.extend(self.values_for(dependency))
        return values

    def all_values(self, dependencies: Iterable[Dependency]) -> dict[str, list[AttributeValue]]:
        """Dependency values grouped by attribute id.

        A dependency narrowed to one attribute contributes only that attribute;
        otherwise every attribute the plugin produced is included.
        """
        result: dict[str, list[AttributeValue]] = {}
        for dependency in dependencies:
            outcome = self.resolved.get(dependency.plugin_id)
            if outcome is None or not outcome.is_resolved:
                continue
            for attribute_id, attribute in outcome.attributes.items():
                if dependency.attribute_id is not None and attribute_id != dependency.attribute_id:
                    continue
                result.setdefault(attribute_id, []).extend(attribute.values)
        return result
