"""Settings and logging configuration.

Settings are read from ``CONTINUATIONS_*`` environment variables (and a
``.env`` file). Logging uses the standard library with either a plain or a
JSON formatter, always on stderr so stdout stays free for command output.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

from litestar_continuations.tokens.codec import (
    DEFAULT_COMPRESS_THRESHOLD,
    DEFAULT_MAX_TOKEN_BYTES,
    DEFAULT_TTL,
    TokenCodec,
)

__all__ = ["ContinuationSettings", "JsonFormatter", "configure_logging"]

PLAIN_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

CORRELATION_FIELDS = ("request_id", "workflow_id", "step_id", "command", "action")

_RESERVED_LOG_RECORD_ATTRS: set[str] = {
    "args",
    "asctime",
    "created",
    "exc_info",
    "exc_text",
    "filename",
    "funcName",
    "levelname",
    "levelno",
    "lineno",
    "module",
    "msecs",
    "message",
    "msg",
    "name",
    "pathname",
    "process",
    "processName",
    "relativeCreated",
    "stack_info",
    "taskName",
    "thread",
    "threadName",
}


class ContinuationSettings(BaseSettings):
    """Runtime configuration for tokens, workflow state and logging."""

    secret: SecretStr | None = Field(
        default=None,
        description="Process-wide token signing secret",
    )
    require_secret: bool = Field(
        default=False,
        description="Refuse to start with the install-derived fallback key",
    )
    root_path: Path = Field(
        default_factory=Path.cwd,
        description="Install root used by the fallback key derivation",
    )
    token_ttl: int = Field(
        default=DEFAULT_TTL,
        gt=0,
        description="Token lifetime in seconds",
    )
    max_token_bytes: int = Field(
        default=DEFAULT_MAX_TOKEN_BYTES,
        gt=0,
        description="Encoded token size above which a warning is logged",
    )
    compress_threshold: int = Field(
        default=DEFAULT_COMPRESS_THRESHOLD,
        ge=0,
        description="Payload size above which token payloads are compressed",
    )
    state_dir: Path = Field(
        default=Path(".continuations"),
        description="Directory for workflow manifests",
    )
    manifest_ttl: int = Field(
        default=7 * 24 * 3600,
        gt=0,
        description="Lifetime in seconds of running and paused workflow manifests",
    )
    retention: int = Field(
        default=24 * 3600,
        ge=0,
        description="Seconds terminal workflow manifests are kept",
    )
    actions: str | None = Field(
        default=None,
        description="Import path ('module:attribute') of the ActionRegistry or a factory returning one",
    )
    log_level: str = Field(
        default="INFO",
        description="Logging level",
    )
    log_json: bool = Field(
        default=False,
        description="Emit JSON log records",
    )

    model_config = SettingsConfigDict(
        env_prefix="CONTINUATIONS_",
        env_file=".env",
        extra="ignore",
    )

    @property
    def workflow_dir(self) -> Path:
        return self.state_dir / "workflows"

    @property
    def manifest_ttl_delta(self) -> timedelta:
        return timedelta(seconds=self.manifest_ttl)

    @property
    def retention_delta(self) -> timedelta:
        return timedelta(seconds=self.retention)

    def build_codec(self) -> TokenCodec:
        """Create a token codec from these settings.

        Raises:
            InsecureKeyError: If ``require_secret`` is set and no secret is configured.
        """
        return TokenCodec(
            self.secret.get_secret_value() if self.secret is not None else None,
            root_path=self.root_path,
            require_secret=self.require_secret,
            ttl=self.token_ttl,
            max_token_bytes=self.max_token_bytes,
            compress_threshold=self.compress_threshold,
        )


class JsonFormatter(logging.Formatter):
    """JSON formatter for logging records.

    Correlation fields passed through ``extra`` (``request_id``,
    ``workflow_id``, ``step_id``, ``command``, ``action``) become top-level
    keys; any other extras are nested under ``extra``.
    """

    def format(self, record: logging.LogRecord) -> str:  # noqa: A003 (record)
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        extra = {
            key: value
            for key, value in record.__dict__.items()
            if key not in _RESERVED_LOG_RECORD_ATTRS and not key.startswith("_")
        }
        for key in CORRELATION_FIELDS:
            if key in extra:
                payload[key] = extra.pop(key)
        if extra:
            payload["extra"] = extra

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload, ensure_ascii=False, default=str)


def configure_logging(level: str = "INFO", json_output: bool = False) -> None:
    """Configure root logging on stderr.

    Args:
        level: Logging level name.
        json_output: Use the JSON formatter instead of the plain one.
    """
    root = logging.getLogger()

    # Remove any existing handlers to avoid duplicate logs when re-configuring.
    for handler in list(root.handlers):
        root.removeHandler(handler)

    handler = logging.StreamHandler(stream=sys.stderr)
    handler.setFormatter(JsonFormatter() if json_output else logging.Formatter(PLAIN_FORMAT))

    root.addHandler(handler)
    root.setLevel(level.upper())
