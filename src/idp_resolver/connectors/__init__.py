"""Data connectors, including the pairwise identifier connectors."""

from idp_resolver.connectors.computed import ComputedIdConnector
from idp_resolver.connectors.persistent import (
    Derivation,
    MultiValuePolicy,
    PersistentIdConnector,
    derive_identifier,
    fingerprint,
)
from idp_resolver.connectors.principal import PrincipalDataConnector
from idp_resolver.connectors.static import StaticDataConnector
from idp_resolver.connectors.stored import StoredIdConnector

__all__ = [
    "ComputedIdConnector",
    "Derivation",
    "MultiValuePolicy",
    "PersistentIdConnector",
    "PrincipalDataConnector",
    "StaticDataConnector",
    "StoredIdConnector",
    "derive_identifier",
    "fingerprint",
]
