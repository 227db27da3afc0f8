"""Content-hash change detection for fetched payloads.

Fetchers are responsible for canonicalizing what they return (stable item
ordering, trimmed whitespace). This module turns that canonical payload into
a stable fingerprint and compares it with the one stored from the previous
poll. An unchanged fingerprint means the fetch carries no new information
and is not processed again.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass
from typing import Any

from signalpoll.errors import ParseError


@dataclass(frozen=True)
class ChangeResult:
    """Outcome of comparing a payload against the previous fingerprint.

    Attributes:
        content_hash: SHA-256 hex digest of the canonical payload.
        changed: True when the hash differs from the previous one (or there
            was no previous one).
    """

    content_hash: str
    changed: bool


def canonical_bytes(payload: Any) -> bytes:
    """Encode a payload into the byte form that gets hashed.

    ``bytes`` and ``str`` payloads are hashed as-is; anything else is encoded
    as JSON with sorted keys and compact separators so dict ordering does not
    affect the fingerprint.

    Raises:
        ParseError: If the payload cannot be JSON-encoded.
    """
    if isinstance(payload, bytes):
        return payload
    if isinstance(payload, str):
        return payload.encode("utf-8")
    try:
        text = json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    except (TypeError, ValueError) as e:
        raise ParseError(f"Payload is not canonicalizable: {e}") from e
    return text.encode("utf-8")


def content_hash(payload: Any) -> str:
    """Return the SHA-256 fingerprint of a canonical payload."""
    return hashlib.sha256(canonical_bytes(payload)).hexdigest()


def detect_change(payload: Any, previous_hash: str | None) -> ChangeResult:
    """Fingerprint ``payload`` and compare it with ``previous_hash``.

    Args:
        payload: Canonical representation of the fetched content.
        previous_hash: Hash stored after the last successful poll, if any.

    Returns:
        ChangeResult with the new hash and whether it differs.
    """
    digest = content_hash(payload)
    return ChangeResult(content_hash=digest, changed=digest != previous_hash)
