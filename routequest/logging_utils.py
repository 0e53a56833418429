import json
import logging
import os
import sys
import typing as _t
from contextvars import ContextVar
from typing import Any, Dict, Optional

# Request id for the request being served, set by the HTTP middleware
request_id_ctx: ContextVar[Optional[str]] = ContextVar("request_id", default=None)

# Access-log fields; pretty mode renders these on the request line
_REQUEST_FIELDS = ("method", "path", "status", "duration_ms", "client", "user_agent")

# Progress/leaderboard fields passed via extra=
_DOMAIN_FIELDS = (
    "player_id",
    "route_id",
    "checkpoint_id",
    "session_id",
    "points",
    "route_completed",
    "distance_m",
    "attempt",
    "timeframe",
    "checkpoints",
    "database",
    "migration",
    "errors",
    "error",
)

_ANSI = {
    "reset": "\033[0m",
    "bold": "\033[1m",
    "grey": "\033[90m",
    "red": "\033[31m",
    "green": "\033[32m",
    "yellow": "\033[33m",
    "blue": "\033[34m",
    "magenta": "\033[35m",
    "cyan": "\033[36m",
}

_LEVEL_COLORS = {
    "DEBUG": "cyan",
    "INFO": "green",
    "WARNING": "yellow",
    "ERROR": "red",
    "CRITICAL": "magenta",
}


def structured_fields(record: logging.LogRecord) -> Dict[str, Any]:
    """Known extra= attributes present on the record, in a stable order."""
    out: Dict[str, Any] = {}
    for key in _REQUEST_FIELDS + _DOMAIN_FIELDS:
        val = getattr(record, key, None)
        if val is not None:
            out[key] = val
    return out


class JsonFormatter(logging.Formatter):
    """One JSON object per line, for log shipping."""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "level": record.levelname,
            "time": self.formatTime(record, datefmt="%Y-%m-%dT%H:%M:%S%z"),
            "logger": record.name,
            "message": record.getMessage(),
        }
        rid = request_id_ctx.get()
        if rid:
            payload["request_id"] = rid
        payload.update(structured_fields(record))
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        # datetimes and ids from extra= are not always JSON-native
        return json.dumps(payload, ensure_ascii=False, default=str)


class ColorFormatter(logging.Formatter):
    """Readable single-line output for local development."""

    def __init__(self, use_color: bool = True):
        super().__init__()
        self.use_color = use_color

    def _paint(self, text: str, color: str) -> str:
        if not self.use_color or not color:
            return text
        return f"{_ANSI[color]}{text}{_ANSI['reset']}"

    def _status(self, status: Any) -> Optional[str]:
        if not isinstance(status, int):
            return None
        if status < 300:
            color = "green"
        elif status < 400:
            color = "cyan"
        elif status < 500:
            color = "yellow"
        else:
            color = "red"
        return self._paint(str(status), color)

    def _request_segment(self, fields: Dict[str, Any]) -> Optional[str]:
        parts: _t.List[str] = []
        if "method" in fields:
            parts.append(self._paint(str(fields["method"]), "bold"))
        if "path" in fields:
            parts.append(self._paint(str(fields["path"]), "cyan"))
        status = self._status(fields.get("status"))
        if status:
            parts.append(status)
        if "duration_ms" in fields:
            parts.append(self._paint(f"{fields['duration_ms']}ms", "grey"))
        return " ".join(parts) or None

    def _context_segment(self, fields: Dict[str, Any]) -> Optional[str]:
        pairs = [f"{k}={fields[k]}" for k in _DOMAIN_FIELDS if k in fields]
        if "client" in fields:
            pairs.append(f"client={fields['client']}")
        ua = fields.get("user_agent")
        if ua:
            pairs.append(f"ua=\"{ua if len(ua) <= 64 else ua[:61] + '...'}\"")
        return "[" + " ".join(pairs) + "]" if pairs else None

    def format(self, record: logging.LogRecord) -> str:
        fields = structured_fields(record)
        parts: _t.List[str] = [
            self._paint(record.levelname, _LEVEL_COLORS.get(record.levelname, "")),
            self.formatTime(record, datefmt="%H:%M:%S"),
        ]
        rid = request_id_ctx.get()
        if rid:
            parts.append(self._paint(f"rid={rid}", "magenta"))
        parts.append(self._paint(record.name, "blue"))

        request = self._request_segment(fields)
        if request:
            parts.append(request)
        msg = record.getMessage()
        if msg:
            parts.extend(["-", msg])
        context = self._context_segment(fields)
        if context:
            parts.append(self._paint(context, "grey"))
        if record.exc_info:
            parts.append("\n" + self.formatException(record.exc_info))
        return " ".join(parts)


def _wants_pretty(stream) -> bool:
    fmt = os.getenv("LOG_FORMAT", "").lower()
    if fmt in ("pretty", "json"):
        return fmt == "pretty"
    isatty = getattr(stream, "isatty", None)
    return bool(isatty and isatty())


def setup_logging(level: int = logging.INFO) -> logging.Logger:
    """Install a single stdout handler on the root and uvicorn loggers.

    LOG_FORMAT=pretty|json picks the formatter (default: pretty on a TTY,
    JSON otherwise). LOG_COLOR=0 turns off ANSI colors in pretty mode and
    LOG_LEVEL overrides ``level``.
    """
    env_level = os.getenv("LOG_LEVEL", "").upper()
    if env_level:
        level = getattr(logging, env_level, level)

    handler = logging.StreamHandler(sys.stdout)
    if _wants_pretty(sys.stdout):
        use_color = os.getenv("LOG_COLOR", "1").lower() not in ("0", "false", "no")
        handler.setFormatter(ColorFormatter(use_color=use_color))
    else:
        handler.setFormatter(JsonFormatter())

    root = logging.getLogger()
    root.setLevel(level)
    for h in root.handlers[:]:
        root.removeHandler(h)
    root.addHandler(handler)

    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        lg = logging.getLogger(name)
        lg.handlers = [handler]
        lg.setLevel(level)
        lg.propagate = False

    return root


def get_logger(name: str = "routequest") -> logging.Logger:
    return logging.getLogger(name)
