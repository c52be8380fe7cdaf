"""Regular expression split definition."""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING, Any

from idp_resolver.errors import ComponentInitializationError
from idp_resolver.models.attributes import Attribute, AttributeValue, StringValue
from idp_resolver.models.resolution import ResolutionContext
from idp_resolver.plugins.base import AttributeDefinition

if TYPE_CHECKING:
    from idp_resolver.resolver.work_context import ResolutionWorkContext

logger = logging.getLogger(__name__)


class RegexSplitAttributeDefinition(AttributeDefinition):
    """Releases the first capture group of ``regexp`` for each fully matching value.

    Values that do not match are dropped.
    """

    def __init__(
        self,
        plugin_id: str,
        *,
        regexp: str | None = None,
        case_sensitive: bool = True,
        **kwargs: Any,
    ) -> None:
        super().__init__(plugin_id, **kwargs)
        self.regexp = regexp
        self.case_sensitive = case_sensitive
        self._pattern: re.Pattern[str] | None = None

    def _do_initialize(self) -> None:
        super()._do_initialize()
        self._require_dependencies()
        if not self.regexp:
            raise ComponentInitializationError(f"{self.log_prefix} No regular expression was configured")
        try:
            self._pattern = re.compile(self.regexp, 0 if self.case_sensitive else re.IGNORECASE)
        except re.error as e:
            raise ComponentInitializationError(f"{self.log_prefix} Invalid regular expression: {e}") from e
        if self._pattern.groups < 1:
            raise ComponentInitializationError(f"{self.log_prefix} Regular expression has no capture group")

    def _resolve_attribute(
        self, context: ResolutionContext, work_context: ResolutionWorkContext
    ) -> Attribute | None:
        strings = self._string_inputs(work_context.merged_values(self.dependencies))
        if strings is None:
            return None
        values: list[AttributeValue] = []
        for s in strings:
            match = self._pattern.fullmatch(s)
            if match is None or match.group(1) is None:
                logger.debug("%s Value '%s' did not match regular expression", self.log_prefix, s)
                continue
            values.append(StringValue(value=match.group(1)))
        return Attribute(id=self.id, values=values)
