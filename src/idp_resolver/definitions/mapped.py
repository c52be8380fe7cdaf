"""Value-mapping attribute definition."""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field

from idp_resolver.errors import ComponentInitializationError
from idp_resolver.models.attributes import Attribute, AttributeValue, StringValue
from idp_resolver.models.resolution import ResolutionContext
from idp_resolver.plugins.base import AttributeDefinition

if TYPE_CHECKING:
    from idp_resolver.resolver.work_context import ResolutionWorkContext

logger = logging.getLogger(__name__)


class SourceValue(BaseModel):
    """Pattern one input value is tested against.

    ``value`` is a regular expression. It must match the whole input unless
    ``partial_match`` is set.
    """

    value: str
    ignore_case: bool = False
    partial_match: bool = False

    def compile(self) -> re.Pattern[str]:
        return re.compile(self.value, re.IGNORECASE if self.ignore_case else 0)


class ValueMap(BaseModel):
    """Maps any matching input to ``return_value``.

    ``return_value`` may refer to capture groups (``\\1``, ``\\g<name>``).
    """

    return_value: str
    source_values: list[SourceValue] = Field(default_factory=list)


class MappedAttributeDefinition(AttributeDefinition):
    def __init__(
        self,
        plugin_id: str,
        *,
        value_maps: Iterable[ValueMap] = (),
        default_value: str | None = None,
        pass_through: bool = False,
        **kwargs: Any,
    ) -> None:
        super().__init__(plugin_id, **kwargs)
        self.value_maps = list(value_maps)
        self.default_value = default_value
        self.pass_through = pass_through
        self._compiled: list[tuple[str, list[tuple[re.Pattern[str], bool]]]] = []

    def _do_initialize(self) -> None:
        super()._do_initialize()
        self._require_dependencies()
        if not self.value_maps:
            raise ComponentInitializationError(f"{self.log_prefix} No value maps were configured")
        if self.default_value == "":
            raise ComponentInitializationError(f"{self.log_prefix} Default value cannot be empty")
        compiled = []
        for value_map in self.value_maps:
            if not value_map.source_values:
                raise ComponentInitializationError(
                    f"{self.log_prefix} Value map for '{value_map.return_value}' has no source values"
                )
            try:
                patterns = [(sv.compile(), sv.partial_match) for sv in value_map.source_values]
            except re.error as e:
                raise ComponentInitializationError(f"{self.log_prefix} Invalid source value: {e}") from e
            compiled.append((value_map.return_value, patterns))
        self.value_maps = tuple(self.value_maps)
        self._compiled = compiled

    def _resolve_attribute(
        self, context: ResolutionContext, work_context: ResolutionWorkContext
    ) -> Attribute | None:
        strings = self._string_inputs(work_context.merged_values(self.dependencies))
        if strings is None:
            return None

        values: list[AttributeValue] = []
        for s in strings:
            mapped = self._map(s)
            if mapped:
                values.extend(StringValue(value=m) for m in mapped)
            elif self.pass_through:
                logger.debug("%s Passing through unmapped value '%s'", self.log_prefix, s)
                values.append(StringValue(value=s))

        if not values and self.default_value is not None:
            logger.debug("%s No value was mapped, using default '%s'", self.log_prefix, self.default_value)
            values.append(StringValue(value=self.default_value))
        return Attribute(id=self.id, values=values)

    def _map(self, value: str) -> list[str]:
        results: list[str] = []
        for return_value, patterns in self._compiled:
            for pattern, partial in patterns:
                match = pattern.search(value) if partial else pattern.fullmatch(value)
                if match is not None:
                    results.append(match.expand(return_value))
                    break
        return results
