from __future__ import annotations

import hashlib
import logging
import os
import re
import uuid
from contextvars import ContextVar
from typing import Any, Dict, List, Optional

import structlog

# Request correlation id, set by the API middleware
correlation_id_var: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)

# Fields whose value is a credential in its entirety
_SECRET_FIELDS = ("password", "secret", "authorization", "hash")
# Compact JWS: base64url header starting with '{"', payload and signature
_JWT_PATTERN = re.compile(r"eyJ[\w-]+\.[\w-]+\.[\w-]+")

_TRUTHY = {"1", "true", "yes", "on"}


def get_correlation_id() -> Optional[str]:
    return correlation_id_var.get()


def set_correlation_id(correlation_id: Optional[str] = None) -> str:
    """Bind ``correlation_id`` (or a fresh uuid4) to the current context."""
    cid = correlation_id or str(uuid.uuid4())
    correlation_id_var.set(cid)
    return cid


def _add_correlation_id(
    logger: Any, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    cid = get_correlation_id()
    if cid:
        event_dict["correlation_id"] = cid
    return event_dict


def _scrub_credentials(
    logger: Any, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """Keep secrets and bearer tokens out of log output.

    Secret fields are replaced outright. Every other string value has
    embedded JWTs replaced with ``[jwt]``; registry keys and backend error
    messages carry refresh tokens verbatim.
    """
    for field, value in list(event_dict.items()):
        if not isinstance(value, str):
            continue
        if any(marker in field.lower() for marker in _SECRET_FIELDS):
            event_dict[field] = "[redacted]"
        elif "eyJ" in value:
            event_dict[field] = _JWT_PATTERN.sub("[jwt]", value)
    return event_dict


def _processors(json_output: bool) -> List[Any]:
    processors: List[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        _add_correlation_id,
    ]
    if json_output:
        # Render tracebacks first so the scrubber sees them
        processors.append(structlog.processors.format_exc_info)
    processors += [
        _scrub_credentials,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]
    if json_output:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))
    return processors


def configure_logging(
    log_level: Optional[str] = None,
    json_output: Optional[bool] = None,
    development_mode: Optional[bool] = None,
) -> None:
    """Configure structlog; unset arguments fall back to the environment.

    Environment:
        LOG_LEVEL: DEBUG, INFO, WARNING or ERROR (default INFO)
        LOG_JSON: JSON lines when true (default), console output otherwise
        LOG_DEV_MODE: force console output
    """
    if log_level is None:
        log_level = os.getenv("LOG_LEVEL", "INFO")
    if json_output is None:
        json_output = os.getenv("LOG_JSON", "true").lower() in _TRUTHY
    if development_mode is None:
        development_mode = os.getenv("LOG_DEV_MODE", "false").lower() in _TRUTHY

    structlog.configure(
        processors=_processors(json_output and not development_mode),
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, log_level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


configure_logging()


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def token_fingerprint(token: Optional[str]) -> Optional[str]:
    """Short sha256 prefix identifying a token in logs without revealing it."""
    if not token:
        return None
    return hashlib.sha256(token.encode("utf-8")).hexdigest()[:12]
