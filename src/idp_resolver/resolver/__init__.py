"""Attribute resolution orchestrator and its per-request work context."""

from idp_resolver.resolver.engine import AttributeResolver
from idp_resolver.resolver.work_context import ResolutionWorkContext

__all__ = ["AttributeResolver", "ResolutionWorkContext"]
