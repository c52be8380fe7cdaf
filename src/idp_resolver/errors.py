"""Exceptions raised by resolver components and the identifier store."""

from __future__ import annotations


class ComponentInitializationError(ValueError):
    """A component's configuration is invalid; it never becomes usable."""


class UnmodifiableComponentError(RuntimeError):
    """Configuration was changed after the component was initialized."""


class UninitializedComponentError(RuntimeError):
    """A component was used before initialize() or after destroy()."""


class ResolutionError(RuntimeError):
    """A plugin failed to produce its output for a request."""


class StoreError(ResolutionError):
    """The identifier store could not complete an operation."""
