"""Template attribute definition."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from string import Template
from typing import TYPE_CHECKING, Any

from idp_resolver.errors import ComponentInitializationError, ResolutionError
from idp_resolver.models.attributes import Attribute, AttributeValue, EmptyValue, StringValue
from idp_resolver.models.resolution import ResolutionContext
from idp_resolver.plugins.base import AttributeDefinition

if TYPE_CHECKING:
    from idp_resolver.resolver.work_context import ResolutionWorkContext

logger = logging.getLogger(__name__)


class TemplateAttributeDefinition(AttributeDefinition):
    """Fills a ``string.Template`` once per value index of its source attributes.

    With sources ``givenName`` and ``sn`` each holding two values, the template
    ``"${givenName} ${sn}"`` yields two values: one from the first value of each
    source, one from the second. Every source must hold the same number of
    values. A value index where any source holds an empty marker produces no
    output value.
    """

    def __init__(
        self,
        plugin_id: str,
        *,
        template: str | None = None,
        source_attribute_ids: Iterable[str] = (),
        **kwargs: Any,
    ) -> None:
        super().__init__(plugin_id, **kwargs)
        self.template = template
        self.source_attribute_ids = list(source_attribute_ids)
        self._template: Template | None = None

    def _do_initialize(self) -> None:
        super()._do_initialize()
        self._require_dependencies()
        if not self.source_attribute_ids:
            raise ComponentInitializationError(f"{self.log_prefix} No source attributes were configured")
        if not self.template:
            raise ComponentInitializationError(f"{self.log_prefix} No template was configured")
        template = Template(self.template)
        if not template.is_valid():
            raise ComponentInitializationError(f"{self.log_prefix} Template is not valid: {self.template!r}")
        unknown = set(template.get_identifiers()) - set(self.source_attribute_ids)
        if unknown:
            raise ComponentInitializationError(
                f"{self.log_prefix} Template references unconfigured attributes {sorted(unknown)}"
            )
        self.source_attribute_ids = tuple(self.source_attribute_ids)
        self._template = template

    def _resolve_attribute(
        self, context: ResolutionContext, work_context: ResolutionWorkContext
    ) -> Attribute | None:
        available = work_context.all_values(self.dependencies)
        columns: dict[str, list[str | None]] = {}
        for attribute_id in self.source_attribute_ids:
            strings = self._template_strings(attribute_id, available.get(attribute_id, []))
            if strings is None:
                return None
            columns[attribute_id] = strings

        counts = {len(strings) for strings in columns.values()}
        if len(counts) > 1:
            raise ResolutionError(
                f"{self.log_prefix} All source attributes used in the template must have the same "
                f"number of values, found {dict((k, len(v)) for k, v in columns.items())}"
            )

        values: list[AttributeValue] = []
        for index in range(counts.pop()):
            mapping = {attribute_id: strings[index] for attribute_id, strings in columns.items()}
            if None in mapping.values():
                logger.debug("%s Skipping value %d, a source value was an empty marker", self.log_prefix, index)
                continue
            values.append(StringValue(value=self._template.substitute(mapping)))
        return Attribute(id=self.id, values=values)

    def _template_strings(self, attribute_id: str, values: list[AttributeValue]) -> list[str | None] | None:
        strings: list[str | None] = []
        for value in values:
            if isinstance(value, EmptyValue):
                strings.append(None)
            elif isinstance(value, StringValue):
                strings.append(value.value)
            else:
                logger.warning(
                    "%s Source attribute '%s' has a '%s' value, only strings can be templated",
                    self.log_prefix,
                    attribute_id,
                    value.kind,
                )
                return None
        return strings
