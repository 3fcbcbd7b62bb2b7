"""JSON logging with request and socket context.

HTTP requests and Socket.IO events bind their identifiers (request id, route,
user, group, sid) into one context mapping; every record emitted while it is
bound carries those fields.
"""

from __future__ import annotations

import json
import logging
from contextvars import ContextVar, Token
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Mapping, Optional

from grouptalk.settings import settings

_CONTEXT: ContextVar[Mapping[str, str]] = ContextVar("grouptalk_log_context", default=MappingProxyType({}))

_LOGGER_NAME = "grouptalk"

# Message bodies and credentials never reach the log stream.
_REDACTED_KEYS = ("token", "secret", "authorization", "password", "email", "content", "payload")

_MAX_VALUE_LENGTH = 256

# Attributes every LogRecord has; anything else came from ``extra=``.
_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {"message", "asctime", "taskName"}

# Chatty transport loggers that only matter when debugging the socket layer.
_QUIET_LOGGERS = ("engineio.server", "socketio.server", "asyncpg")


def bind_context(**fields: Any) -> Token:
	"""Add ``fields`` to the logging context; ``None`` values are skipped."""
	merged = dict(_CONTEXT.get())
	merged.update({key: str(value) for key, value in fields.items() if value is not None})
	return _CONTEXT.set(MappingProxyType(merged))


def reset_context(token: Token) -> None:
	_CONTEXT.reset(token)


def current_context() -> Mapping[str, str]:
	return _CONTEXT.get()


def current_request_id() -> Optional[str]:
	return _CONTEXT.get().get("request_id")


def scrub(key: str, value: Any) -> Any:
	if any(word in key.lower() for word in _REDACTED_KEYS):
		return "[redacted]"
	if isinstance(value, (int, float, bool)) or value is None:
		return value
	text = value if isinstance(value, str) else str(value)
	return text if len(text) <= _MAX_VALUE_LENGTH else text[:_MAX_VALUE_LENGTH] + "..."


class JSONLogFormatter(logging.Formatter):
	"""One JSON object per line."""

	def format(self, record: logging.LogRecord) -> str:  # noqa: A003 (match logging api)
		payload: dict[str, Any] = {
			"ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
			"level": record.levelname.lower(),
			"logger": record.name,
			"msg": record.getMessage(),
			"service": settings.service_name,
			"env": settings.environment,
			"commit": settings.git_commit,
		}
		payload.update(_CONTEXT.get())
		for key, value in record.__dict__.items():
			if key not in _RECORD_ATTRS and key not in payload:
				payload[key] = scrub(key, value)
		if record.exc_info:
			payload["exc_info"] = self.formatException(record.exc_info)
		return json.dumps(payload, separators=(",", ":"), default=str)


def configure_logging() -> logging.Logger:
	root = logging.getLogger()
	root.handlers.clear()
	handler = logging.StreamHandler()
	handler.setFormatter(JSONLogFormatter())
	root.addHandler(handler)
	root.setLevel(settings.obs_log_level)
	for name in _QUIET_LOGGERS:
		logging.getLogger(name).setLevel(max(logging.WARNING, root.level))
	return logging.getLogger(_LOGGER_NAME)


def get_logger(name: Optional[str] = None) -> logging.Logger:
	return logging.getLogger(name or _LOGGER_NAME)
