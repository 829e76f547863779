"""Continuation token encoding, signing and validation."""

from __future__ import annotations

from litestar_continuations.tokens.codec import (
    DEFAULT_TTL,
    PROTOCOL_VERSION,
    TokenCodec,
    canonical_json,
    compute_digest,
    generate_request_id,
)

__all__ = [
    "DEFAULT_TTL",
    "PROTOCOL_VERSION",
    "TokenCodec",
    "canonical_json",
    "compute_digest",
    "generate_request_id",
]
