"""Continuation token encoding, signing and validation.

Wire format (URL-safe base64 without padding)::

    +--------+-------+----------------+-----------+--------+---------------+
    | format | flags | payload length |  payload  | filler |   signature   |
    | 1 byte | 1 byte|  4 bytes (BE)  | JSON/zlib | 0-2 B  | 32 B HMAC-256 |
    +--------+-------+----------------+-----------+--------+---------------+

The payload is the canonical JSON serialization of ``TokenClaims``. The
filler pads the raw token to a multiple of three bytes so the base64 text has
no padding and every character carries signed bits. The signature covers
every byte before it.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json
import logging
import re
import secrets
import socket
import string
import struct
import time
import zlib
from collections.abc import Callable, Iterable
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

from litestar_continuations.core.models import NextAction, TokenClaims
from litestar_continuations.core.types import Parameters
from litestar_continuations.exceptions import (
    InsecureKeyError,
    MalformedTokenError,
    SignatureInvalidError,
    TokenExpiredError,
)

__all__ = [
    "DEFAULT_COMPRESS_THRESHOLD",
    "DEFAULT_MAX_TOKEN_BYTES",
    "DEFAULT_TTL",
    "PROTOCOL_VERSION",
    "TokenCodec",
    "canonical_json",
    "compute_digest",
    "derive_key",
    "fallback_secret",
    "generate_request_id",
]

logger = logging.getLogger(__name__)

PROTOCOL_VERSION = 1
DEFAULT_TTL = 3600
DEFAULT_MAX_TOKEN_BYTES = 2048
DEFAULT_COMPRESS_THRESHOLD = 1024

FORMAT_BYTE = 0x01
FLAG_COMPRESSED = 0x01
SIGNATURE_SIZE = 32

_HEADER = struct.Struct(">BBI")
_MIN_TOKEN_LENGTH = 4 * ((_HEADER.size + SIGNATURE_SIZE + 2) // 3)
_ALPHABET = re.compile(r"[A-Za-z0-9_-]+")
_BASE36 = string.digits + string.ascii_uppercase

_fallback_warned = False


def canonical_json(data: Any) -> str:
    """Serialize data deterministically (sorted keys, compact separators)."""
    return json.dumps(data, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)


def compute_digest(data: Any) -> str:
    """Compute the SHA-256 digest of a result.

    Strings and bytes are hashed as-is; anything else is hashed over its
    canonical JSON serialization, so equal structures give equal digests.

    Args:
        data: The data to digest.

    Returns:
        The digest as ``"sha256:<hex>"``.
    """
    if isinstance(data, bytes):
        raw = data
    elif isinstance(data, str):
        raw = data.encode("utf-8")
    else:
        raw = canonical_json(data).encode("utf-8")
    return f"sha256:{hashlib.sha256(raw).hexdigest()}"


def _base36(value: int) -> str:
    digits = []
    while True:
        value, remainder = divmod(value, 36)
        digits.append(_BASE36[remainder])
        if value == 0:
            return "".join(reversed(digits))


def generate_request_id(command: str = "generic") -> str:
    """Generate a request id correlating every token minted by one resolution.

    Example:
        >>> generate_request_id("search").startswith("req_search_")
        True
    """
    random_part = "".join(secrets.choice(_BASE36) for _ in range(6))
    return f"req_{command}_{_base36(time.time_ns() // 1_000_000)}_{random_part}"


def derive_key(secret: str | bytes, version: int = PROTOCOL_VERSION) -> bytes:
    """Derive the signing key for a protocol version from a secret."""
    if isinstance(secret, str):
        secret = secret.encode("utf-8")
    return hmac.new(secret, f"litestar-continuations/token/v{version}".encode(), hashlib.sha256).digest()


def fallback_secret(root_path: str | Path | None = None, version: int = PROTOCOL_VERSION) -> bytes:
    """Deterministic secret derived from install-specific material.

    Only suitable for development; tokens signed with it are flagged ``insecure``.
    """
    root = Path(root_path or Path.cwd()).resolve()
    material = f"{root}:{socket.gethostname()}:v{version}"
    return hashlib.sha256(material.encode("utf-8")).digest()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenCodec:
    """Mints and validates signed continuation tokens.

    The codec is a pure function of the claims and the key: it holds no
    per-token state and never caches tokens.

    Example:
        >>> codec = TokenCodec.from_secret("change-me")
        >>> claims = codec.claims("search", "find", {"term": "foo"}, [NextAction(id="analyze:0")])
        >>> codec.validate(codec.mint(claims)) == claims
        True
    """

    def __init__(
        self,
        secret: str | bytes | None = None,
        *,
        root_path: str | Path | None = None,
        require_secret: bool = False,
        ttl: int = DEFAULT_TTL,
        max_token_bytes: int = DEFAULT_MAX_TOKEN_BYTES,
        compress_threshold: int = DEFAULT_COMPRESS_THRESHOLD,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize the codec.

        Args:
            secret: Process-wide signing secret. When omitted the fallback key is used.
            root_path: Install root used by the fallback key derivation.
            require_secret: Refuse to fall back to the install-derived key.
            ttl: Token lifetime in seconds.
            max_token_bytes: Size above which a warning is logged for minted tokens.
            compress_threshold: Payload size above which compression is attempted.
            clock: Returns the current time as an aware datetime; injectable for tests.

        Raises:
            InsecureKeyError: If ``require_secret`` is set and no secret was given.
        """
        global _fallback_warned

        if not secret:
            if require_secret:
                msg = "A signing secret is required (set CONTINUATIONS_SECRET)"
                raise InsecureKeyError(msg)
            secret = fallback_secret(root_path)
            self.insecure = True
            if not _fallback_warned:
                logger.warning(
                    "No CONTINUATIONS_SECRET configured; signing tokens with an install-derived key. "
                    "Tokens are flagged insecure and must not protect a production deployment."
                )
                _fallback_warned = True
        else:
            self.insecure = False

        self._key = derive_key(secret, PROTOCOL_VERSION)
        self.ttl = ttl
        self.max_token_bytes = max_token_bytes
        self.compress_threshold = compress_threshold
        self._clock = clock or _utcnow

    @classmethod
    def from_secret(cls, secret: str | bytes, **kwargs: Any) -> TokenCodec:
        """Create a codec signing with an explicit secret."""
        return cls(secret, **kwargs)

    def now(self) -> datetime:
        return self._clock()

    def claims(
        self,
        command: str,
        action: str,
        parameters: Parameters | None = None,
        next_actions: Iterable[NextAction] = (),
        *,
        context_digest: str | None = None,
        request_id: str | None = None,
        parent: str | None = None,
        ttl: int | None = None,
    ) -> TokenClaims:
        """Build a claim set stamped with the current time and this codec's expiry window."""
        issued_at = self.now()
        return TokenClaims(
            version=PROTOCOL_VERSION,
            issued_at=issued_at,
            expires_at=issued_at + timedelta(seconds=self.ttl if ttl is None else ttl),
            command=command,
            action=action,
            context_digest=context_digest,
            parameters=dict(parameters or {}),
            next_actions=tuple(next_actions),
            request_id=request_id or generate_request_id(command),
            parent=parent,
            insecure=self.insecure,
        )

    def mint(self, claims: TokenClaims) -> str:
        """Serialize and sign a claim set.

        The ``insecure`` flag always reflects the key this codec signs with.

        Args:
            claims: The claims to encode.

        Returns:
            The encoded token.
        """
        if claims.insecure != self.insecure:
            claims = replace(claims, insecure=self.insecure)

        payload = canonical_json(claims.to_dict()).encode("utf-8")
        flags = 0
        if len(payload) > self.compress_threshold:
            compressed = zlib.compress(payload, 9)
            if len(compressed) < len(payload):
                payload, flags = compressed, FLAG_COMPRESSED

        body = _HEADER.pack(FORMAT_BYTE, flags, len(payload)) + payload
        body += b"\x00" * (-(len(body) + SIGNATURE_SIZE) % 3)
        signature = hmac.new(self._key, body, hashlib.sha256).digest()
        token = base64.urlsafe_b64encode(body + signature).decode("ascii")

        if len(token) > self.max_token_bytes:
            logger.warning(
                "Minted %d-byte token for '%s:%s' exceeds the %d-byte budget",
                len(token),
                claims.command,
                claims.action,
                self.max_token_bytes,
            )
        return token

    def validate(self, token: str, *, allow_expired: bool = False) -> TokenClaims:
        """Decode a token and verify its signature and expiry.

        Validation is all-or-nothing: no claim is returned unless the signature
        over the whole token checks out.

        Args:
            token: The encoded token.
            allow_expired: Return the claims of a correctly signed but expired
                token instead of raising (used for re-issue).

        Returns:
            The verified claims.

        Raises:
            MalformedTokenError: If the token is truncated or structurally invalid.
            SignatureInvalidError: If the token content does not match its signature.
            TokenExpiredError: If the token is past its expiry.
        """
        if not isinstance(token, str) or len(token) < _MIN_TOKEN_LENGTH or len(token) % 4:
            msg = "Token is truncated or not a continuation token"
            raise MalformedTokenError(msg)
        if not _ALPHABET.fullmatch(token):
            logger.warning("Rejected token containing characters outside the token alphabet")
            msg = "Token contains characters outside the token alphabet"
            raise SignatureInvalidError(msg)

        try:
            raw = base64.urlsafe_b64decode(token)
        except (binascii.Error, ValueError) as e:
            msg = f"Token is not valid base64: {e}"
            raise MalformedTokenError(msg) from e

        body, signature = raw[:-SIGNATURE_SIZE], raw[-SIGNATURE_SIZE:]
        expected = hmac.new(self._key, body, hashlib.sha256).digest()
        if not hmac.compare_digest(signature, expected):
            logger.warning("Rejected token with invalid signature")
            msg = "Token signature does not match its content"
            raise SignatureInvalidError(msg)

        claims = self._decode_body(body)
        if claims.insecure and not self.insecure:
            logger.warning("Rejected token signed with the fallback key")
            msg = "Token was signed with the insecure fallback key"
            raise SignatureInvalidError(msg)
        if not allow_expired and self.now() > claims.expires_at:
            raise TokenExpiredError(claims)
        return claims

    def digest(self, token: str) -> str:
        """Digest of an encoded token, recorded as ``parent`` by tokens derived from it."""
        return compute_digest(token)

    def _decode_body(self, body: bytes) -> TokenClaims:
        if len(body) < _HEADER.size:
            msg = "Token header is truncated"
            raise MalformedTokenError(msg)
        fmt, flags, length = _HEADER.unpack_from(body)
        if fmt != FORMAT_BYTE or flags & ~FLAG_COMPRESSED:
            msg = f"Unsupported token format {fmt}/{flags}"
            raise MalformedTokenError(msg)

        end = _HEADER.size + length
        payload, filler = body[_HEADER.size : end], body[end:]
        if len(payload) != length or len(filler) > 2 or filler.strip(b"\x00"):
            msg = "Token payload length does not match its header"
            raise MalformedTokenError(msg)

        try:
            if flags & FLAG_COMPRESSED:
                payload = zlib.decompress(payload)
            data = json.loads(payload)
        except (zlib.error, ValueError) as e:
            msg = f"Token payload cannot be decoded: {e}"
            raise MalformedTokenError(msg) from e

        if not isinstance(data, dict) or data.get("version") != PROTOCOL_VERSION:
            msg = "Token was minted under an unsupported protocol version"
            raise MalformedTokenError(msg)
        try:
            return TokenClaims.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            msg = f"Token claims are incomplete: {e}"
            raise MalformedTokenError(msg) from e
