"""Static validation of the plugin dependency graph.

Runs once, when a resolver is initialized, over the full plugin set. Rejects
references to unknown plugins and any dependency cycle, so that no request
ever reaches a graph that cannot be walked.
"""

from __future__ import annotations

from collections.abc import Mapping
from enum import IntEnum

from idp_resolver.errors import ComponentInitializationError
from idp_resolver.plugins.base import DataConnector, ResolverPlugin


class _Color(IntEnum):
    WHITE = 0  # not yet visited
    GRAY = 1  # on the current path
    BLACK = 2  # fully explored


def plugin_edges(plugin: ResolverPlugin) -> list[str]:
    """Plugins that must be reachable before ``plugin`` can run, in order.

    A connector's failover is an edge too: it can be evaluated in the
    connector's place.
    """
    edges = [dep.plugin_id for dep in plugin.dependencies]
    if isinstance(plugin, DataConnector) and plugin.failover_connector_id:
        edges.append(plugin.failover_connector_id)
    return list(dict.fromkeys(edges))


def validate_dependency_graph(
    plugins: Mapping[str, ResolverPlugin],
    *,
    label: str = "Attribute Resolver:",
) -> list[str]:
    """Check the graph and return plugin ids ordered dependencies-first.

    Raises ComponentInitializationError for an unknown dependency, a failover
    that is not a data connector, or a cycle.
    """
    _check_references(plugins, label)

    color: dict[str, _Color] = {pid: _Color.WHITE for pid in plugins}
    order: list[str] = []

    for plugin_id in sorted(plugins):
        if color[plugin_id] == _Color.WHITE:
            _visit(plugin_id, plugins, color, order, [], label)

    return order


def _check_references(plugins: Mapping[str, ResolverPlugin], label: str) -> None:
    for plugin in plugins.values():
        for dep in plugin.dependencies:
            if dep.plugin_id not in plugins:
                raise ComponentInitializationError(
                    f"{label} Plugin '{plugin.id}' has a dependency on plugin "
                    f"'{dep.plugin_id}' which doesn't exist"
                )
        if isinstance(plugin, DataConnector) and plugin.failover_connector_id:
            failover = plugins.get(plugin.failover_connector_id)
            if not isinstance(failover, DataConnector):
                raise ComponentInitializationError(
                    f"{label} Data connector '{plugin.id}' names failover "
                    f"'{plugin.failover_connector_id}' which is not a known data connector"
                )


def _visit(
    plugin_id: str,
    plugins: Mapping[str, ResolverPlugin],
    color: dict[str, _Color],
    order: list[str],
    path: list[str],
    label: str,
) -> None:
    color[plugin_id] = _Color.GRAY
    path.append(plugin_id)

    for target in plugin_edges(plugins[plugin_id]):
        if color[target] == _Color.GRAY:
            cycle = path[path.index(target) :] + [target]
            raise ComponentInitializationError(
                f"{label} Circular dependency between plugins: {' -> '.join(cycle)}"
            )
        if color[target] == _Color.WHITE:
            _visit(target, plugins, color, order, path, label)

    path.pop()
    color[plugin_id] = _Color.BLACK
    order.append(plugin_id)
