"""
Secret addressing — content-addressed names for secret payloads.

    hash            sha256(payload bytes), hex
    short_hash      first 8 hex characters of hash
    addressed_name  "<secret name>_<short_hash>"

Identical payload always yields the identical addressed name; a changed
payload yields a new name, never an in-place update. Hash collisions are
not handled: they are treated like any other content-addressing scheme
treats them.

A service's fingerprint is the sha256 of its sorted addressed names,
joined by newlines. It changes exactly when the content of a referenced
secret changes, and is the sole restart trigger for that service.
"""

from __future__ import annotations

import hashlib
import logging
import os
import re
from collections.abc import Callable, Iterable, Mapping
from pathlib import Path
from typing import Any

from stackplane.core.errors import AddressingError
from stackplane.core.models.plan import SecretAddress, SecretMaterial

logger = logging.getLogger(__name__)

SHORT_HASH_LENGTH = 8

# Names produced by address(); anything else on the runtime is not ours.
ADDRESSED_NAME_RE = re.compile(r"^(?P<name>.+)_(?P<short>[0-9a-f]{%d})$" % SHORT_HASH_LENGTH)

# Resolves a ``value_from`` indirection to payload bytes.
SecretSource = Callable[[str, Any], bytes]


def address(secret_name: str, payload: bytes) -> SecretAddress:
    """Compute the content address of one secret payload."""
    if not isinstance(payload, (bytes, bytearray)):
        raise AddressingError(
            secret_name, f"payload must be bytes, got {type(payload).__name__}"
        )
    digest = hashlib.sha256(bytes(payload)).hexdigest()
    short = digest[:SHORT_HASH_LENGTH]
    return SecretAddress(
        name=secret_name,
        hash=digest,
        short_hash=short,
        addressed_name=f"{secret_name}_{short}",
    )


def fingerprint(addressed_names: Iterable[str]) -> str:
    """Aggregate hash over the set of a service's addressed secret names.

    Order-independent, and a secret mounted at several targets counts once.
    """
    joined = "\n".join(sorted(set(addressed_names)))
    return hashlib.sha256(joined.encode("utf-8")).hexdigest()


def is_addressed_name(name: str) -> bool:
    return ADDRESSED_NAME_RE.match(name) is not None


def prune_candidates(existing: Iterable[str], referenced: Iterable[str]) -> set[str]:
    """Addressed secrets that exist but are no longer referenced.

    Computed strictly as ``existing - referenced`` against the plan just
    built, so a secret created in this very run is never a candidate.
    Names that do not follow the addressed-name pattern are ignored.
    """
    keep = set(referenced)
    return {name for name in existing if is_addressed_name(name) and name not in keep}


def verify(material: SecretAddress, existing_hash: str | None) -> bool:
    """Compare an existing target's content hash with the expected address.

    Returns:
        True if the target is absent (must be created), False if it
        already holds the same content (nothing to do).

    Raises:
        AddressingError: If the target holds different content.
    """
    if existing_hash is None:
        return True
    if existing_hash == material.hash:
        return False
    raise AddressingError(
        material.addressed_name,
        f"existing content hash {existing_hash[:12]}… does not match "
        f"expected {material.hash[:12]}…; refusing to overwrite",
    )


# ── Payload sources ─────────────────────────────────────────────────


def default_secret_source(secret_name: str, value_from: Any) -> bytes:
    """Resolve ``value_from`` from the environment or a file.

    Accepted forms::

        value_from: {env: DB_PASSWORD}
        value_from: {file: /run/keys/db}
        value_from: "env:DB_PASSWORD"
        value_from: "file:/run/keys/db"
    """
    if isinstance(value_from, str) and ":" in value_from:
        scheme, _, ref = value_from.partition(":")
        value_from = {scheme: ref}

    if isinstance(value_from, Mapping) and len(value_from) == 1:
        (scheme, ref), = value_from.items()
        if scheme == "env":
            value = os.environ.get(str(ref))
            if value is None:
                raise AddressingError(secret_name, f"environment variable {ref!r} is not set")
            return value.encode("utf-8")
        if scheme == "file":
            try:
                return Path(str(ref)).read_bytes()
            except OSError as e:
                raise AddressingError(secret_name, f"cannot read {ref}: {e}") from e

    raise AddressingError(secret_name, f"unsupported value_from: {value_from!r}")


class SecretAddressor:
    """Resolves secret payloads and addresses them.

    The source for ``value_from`` indirections is an external
    collaborator; pass a different callable to plug in a vault.
    """

    def __init__(self, source: SecretSource | None = None):
        self._source = source or default_secret_source

    def payload_of(self, secret_name: str, spec: Mapping[str, Any]) -> bytes:
        if "value" in spec:
            value = spec["value"]
            if isinstance(value, (bytes, bytearray)):
                return bytes(value)
            if isinstance(value, str):
                return value.encode("utf-8")
            raise AddressingError(
                secret_name, f"literal value must be a string, got {type(value).__name__}"
            )
        return self._source(secret_name, spec.get("value_from"))

    def material(self, secret_name: str, spec: Mapping[str, Any]) -> SecretMaterial:
        """Resolve and address one declared secret."""
        payload = self.payload_of(secret_name, spec)
        addr = address(secret_name, payload)
        logger.debug("Addressed secret %s as %s", secret_name, addr.addressed_name)
        return SecretMaterial(**addr.model_dump(), payload=payload)

    address = staticmethod(address)
    fingerprint = staticmethod(fingerprint)
