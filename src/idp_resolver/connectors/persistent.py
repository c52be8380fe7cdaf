"""Shared machinery for the pairwise identifier connectors.

Both variants derive a seed from (salt, source value, RP id). The legacy
construction, kept byte-compatible with version-2 deployments, is

    base64(DIGEST(utf8(rp) + b"!" + utf8(value) + b"!" + salt))

with SHA-1 as the default digest. The ``hmac`` derivation keys the digest with
the salt over ``rp!value`` instead.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import logging
from abc import abstractmethod
from collections.abc import Mapping
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from idp_resolver.errors import ComponentInitializationError
from idp_resolver.models.attributes import Attribute, EmptyValue, StringValue
from idp_resolver.models.resolution import ResolutionContext
from idp_resolver.plugins.base import DataConnector

if TYPE_CHECKING:
    from idp_resolver.resolver.work_context import ResolutionWorkContext

logger = logging.getLogger(__name__)

MIN_SALT_LENGTH = 16
_DELIMITER = b"!"


class Derivation(StrEnum):
    LEGACY = "legacy"
    HMAC = "hmac"


class MultiValuePolicy(StrEnum):
    REJECT = "reject"
    FIRST = "first"


def derive_identifier(
    salt: bytes,
    value: str,
    rp_id: str,
    *,
    derivation: Derivation | str = Derivation.LEGACY,
    algorithm: str | None = None,
) -> str:
    """Deterministic one-way identifier for (salt, value, rp_id)."""
    derivation = Derivation(derivation)
    message = rp_id.encode("utf-8") + _DELIMITER + value.encode("utf-8")
    if derivation == Derivation.HMAC:
        digest = hmac.new(salt, message, algorithm or "sha256").digest()
    else:
        md = hashlib.new(algorithm or "sha1")
        md.update(message + _DELIMITER + salt)
        digest = md.digest()
    return base64.b64encode(digest).decode("ascii")


def fingerprint(value: str) -> str:
    """Store lookup key for a source value."""
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


class PersistentIdConnector(DataConnector):
    """Base for connectors that emit one pseudonymous value per (principal, RP).

    Exactly one dependency must supply the source attribute, either as an
    explicit ``source_attribute_id`` or through a dependency narrowed to one
    attribute.
    """

    def __init__(
        self,
        plugin_id: str,
        *,
        salt: bytes | str | None = None,
        source_attribute_id: str | None = None,
        generated_attribute_id: str | None = None,
        algorithm: str | None = None,
        derivation: Derivation | str = Derivation.LEGACY,
        multi_value_policy: MultiValuePolicy | str = MultiValuePolicy.REJECT,
        **kwargs: Any,
    ) -> None:
        super().__init__(plugin_id, **kwargs)
        self.salt = salt.encode("utf-8") if isinstance(salt, str) else salt
        self.source_attribute_id = source_attribute_id
        self.generated_attribute_id = generated_attribute_id
        self.algorithm = algorithm
        self.derivation = derivation
        self.multi_value_policy = multi_value_policy

    def _do_initialize(self) -> None:
        super()._do_initialize()
        if not self.source_attribute_id:
            narrowed = {dep.attribute_id for dep in self.dependencies if dep.attribute_id}
            if len(narrowed) != 1:
                raise ComponentInitializationError(f"{self.log_prefix} No source attribute ID supplied")
            self.source_attribute_id = narrowed.pop()
        if not self.dependencies:
            raise ComponentInitializationError(f"{self.log_prefix} No dependencies were configured")
        if self.salt is None or len(self.salt) < MIN_SALT_LENGTH:
            raise ComponentInitializationError(
                f"{self.log_prefix} Salt must be at least {MIN_SALT_LENGTH} bytes"
            )
        try:
            self.derivation = Derivation(self.derivation)
            self.multi_value_policy = MultiValuePolicy(self.multi_value_policy)
        except ValueError as e:
            raise ComponentInitializationError(f"{self.log_prefix} {e}") from e
        if self.algorithm is not None and self.algorithm not in hashlib.algorithms_available:
            raise ComponentInitializationError(
                f"{self.log_prefix} Unsupported digest algorithm '{self.algorithm}'"
            )
        if not self.generated_attribute_id:
            self.generated_attribute_id = self.id

    def source_value(self, work_context: ResolutionWorkContext) -> str | None:
        """The single plain-string source value, or None when there is none usable."""
        values = work_context.all_values(self.dependencies).get(self.source_attribute_id, [])
        if not values:
            logger.info(
                "%s Source attribute %s for connector provided no values",
                self.log_prefix,
                self.source_attribute_id,
            )
            return None
        if len(values) > 1:
            if self.multi_value_policy == MultiValuePolicy.REJECT:
                logger.warning(
                    "%s Source attribute %s had %d values, refusing to choose one",
                    self.log_prefix,
                    self.source_attribute_id,
                    len(values),
                )
                return None
            logger.warning(
                "%s Source attribute %s had %d values, only the first will be used",
                self.log_prefix,
                self.source_attribute_id,
                len(values),
            )
        value = values[0]
        if isinstance(value, EmptyValue):
            logger.info(
                "%s Source attribute %s value was a %s marker",
                self.log_prefix,
                self.source_attribute_id,
                value.empty_type,
            )
            return None
        if not isinstance(value, StringValue):
            logger.warning(
                "%s Source attribute %s value was of an unsupported type '%s'",
                self.log_prefix,
                self.source_attribute_id,
                value.kind,
            )
            return None
        if not value.value:
            logger.warning("%s Source attribute %s value was empty", self.log_prefix, self.source_attribute_id)
            return None
        return value.value

    def compute(self, value: str, rp_id: str) -> str:
        return derive_identifier(
            self.salt,
            value,
            rp_id,
            derivation=self.derivation,
            algorithm=self.algorithm,
        )

    def _missing_request_data(self, context: ResolutionContext) -> bool:
        if not context.principal:
            logger.warning("%s No principal name available, unable to generate identifier", self.log_prefix)
            return True
        if not context.idp_id:
            logger.warning("%s No IdP identifier available, unable to generate identifier", self.log_prefix)
            return True
        if not context.rp_id:
            logger.warning("%s No RP identifier available, unable to generate identifier", self.log_prefix)
            return True
        return False

    async def _resolve_attributes(
        self, context: ResolutionContext, work_context: ResolutionWorkContext
    ) -> Mapping[str, Attribute] | None:
        if self._missing_request_data(context):
            return None
        value = self.source_value(work_context)
        if value is None:
            return None
        identifier = await self._identifier_for(value, context)
        if identifier is None:
            return None
        return {
            self.generated_attribute_id: Attribute(
                id=self.generated_attribute_id,
                values=[StringValue(value=identifier)],
            )
        }

    @abstractmethod
    async def _identifier_for(self, value: str, context: ResolutionContext) -> str | None:
        """Identifier to release for a usable source value."""
