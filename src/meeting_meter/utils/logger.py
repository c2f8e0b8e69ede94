import json
import logging
import logging.config
import time
from collections.abc import Mapping
from enum import Enum
from functools import lru_cache
from logging import Logger
from pathlib import Path
from typing import Any

_DEBUG_ENABLED = False
_DEBUG_MODULES: set[str] = set()
_CONFIGURED = False
_RUN_ID: str | None = None
_MODE: str | None = None

# ---------------------------------------------------------------------
# Canonical log categories
# ---------------------------------------------------------------------

CATEGORY_LIFECYCLE = "ticker_lifecycle"
CATEGORY_TERMINATION = "termination"
CATEGORY_INPUT = "user_input"

# Used when no logging.json is supplied. Console logs go to stderr; stdout
# carries the cost lines.
DEFAULT_PROFILE: dict[str, Any] = {
    "level": "WARNING",
    "format": {"json": False},
    "handlers": {
        "console": {"enabled": True},
        "file": {"enabled": False},
    },
    "debug": {"enabled": False, "modules": []},
}


def _merge_profile(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for k, v in override.items():
        if isinstance(v, dict) and isinstance(merged.get(k), dict):
            merged[k] = _merge_profile(merged[k], v)
        else:
            merged[k] = v
    return merged


def _build_dict_config(profile: dict[str, Any], *, run_id: str | None, mode: str | None) -> dict[str, Any]:
    level_name = str(profile.get("level", "INFO")).upper()

    format_cfg = profile.get("format", {}) if isinstance(profile.get("format"), dict) else {}
    formatter_name = "json" if bool(format_cfg.get("json", True)) else "standard"

    handlers_cfg = profile.get("handlers", {}) if isinstance(profile.get("handlers"), dict) else {}
    console_cfg = handlers_cfg.get("console", {}) if isinstance(handlers_cfg.get("console"), dict) else {}
    file_cfg = handlers_cfg.get("file", {}) if isinstance(handlers_cfg.get("file"), dict) else {}

    handlers: dict[str, Any] = {}
    root_handlers: list[str] = []

    if bool(console_cfg.get("enabled", True)):
        handlers["console"] = {
            "class": "logging.StreamHandler",
            "level": str(console_cfg.get("level", level_name)).upper(),
            "formatter": formatter_name,
            "filters": ["context"],
            "stream": "ext://sys.stderr",
        }
        root_handlers.append("console")

    if bool(file_cfg.get("enabled", False)):
        path_template = str(file_cfg.get("path", "artifacts/logs/{mode}-{run_id}.jsonl"))
        path = Path(path_template.format(
            run_id=run_id or "run",
            mode=mode or "default",
        ))
        path.parent.mkdir(parents=True, exist_ok=True)
        handlers["file"] = {
            "class": "logging.FileHandler",
            "level": str(file_cfg.get("level", level_name)).upper(),
            "formatter": formatter_name,
            "filters": ["context"],
            "filename": str(path),
            "encoding": "utf-8",
        }
        root_handlers.append("file")

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "filters": {
            "context": {"()": "meeting_meter.utils.logger.ContextFilter"},
        },
        "formatters": {
            "json": {"()": "meeting_meter.utils.logger.JsonFormatter"},
            "standard": {
                "()": "meeting_meter.utils.logger.UtcFormatter",
                "format": "%(asctime)s %(levelname)s %(name)s %(message)s %(context_text)s",
                "datefmt": "%Y-%m-%dT%H:%M:%S",
            },
        },
        "handlers": handlers,
        "root": {
            "level": level_name,
            "handlers": root_handlers,
        },
    }


def _load_profile(config_path: str | None, mode: str | None) -> tuple[str, dict[str, Any]]:
    if config_path is None:
        return mode or "default", dict(DEFAULT_PROFILE)

    path = Path(config_path)
    if not path.is_absolute():
        path = Path.cwd() / path
    with path.open("r", encoding="utf-8") as f:
        cfg = json.load(f)

    profiles = cfg.get("profiles", {})
    if not isinstance(profiles, dict):
        raise TypeError("logging.json 'profiles' must be a dict")

    profile_name = str(mode or cfg.get("active_profile") or "default")
    if profile_name not in profiles:
        raise KeyError(f"logging profile not found: {profile_name}")

    base_profile = profiles.get("default", {})
    if not isinstance(base_profile, dict):
        base_profile = {}
    return profile_name, _merge_profile(base_profile, profiles.get(profile_name, {}))


def init_logging(
    config_path: str | None = None,
    *,
    run_id: str | None = None,
    mode: str | None = None,
) -> None:
    """Configure the root logger from a profile file, or the built-in default."""
    global _DEBUG_ENABLED, _DEBUG_MODULES, _CONFIGURED, _RUN_ID, _MODE

    profile_name, profile = _load_profile(config_path, mode)

    debug_cfg = profile.get("debug", {})
    if not isinstance(debug_cfg, dict):
        debug_cfg = {}
    _DEBUG_ENABLED = bool(debug_cfg.get("enabled", False))
    _DEBUG_MODULES = {str(x) for x in debug_cfg.get("modules", [])}

    _RUN_ID = run_id
    _MODE = mode or profile_name

    logging.config.dictConfig(_build_dict_config(profile, run_id=run_id, mode=_MODE))

    _CONFIGURED = True
    get_logger.cache_clear()


class ContextFilter(logging.Filter):
    """
    Guarantees LogRecord has a `context` dict and a rendered `context_text`.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        ctx = getattr(record, "context", None)
        if ctx is None:
            ctx = {}
        elif not isinstance(ctx, dict):
            ctx = {"_context": safe_jsonable(ctx)}

        if _CONFIGURED:
            if _RUN_ID is not None and "run_id" not in ctx:
                ctx["run_id"] = _RUN_ID
            if _MODE is not None and "mode" not in ctx:
                ctx["mode"] = _MODE

        setattr(record, "context", ctx)
        setattr(record, "context_text", " ".join(f"{k}={v}" for k, v in ctx.items()))
        return True


class UtcFormatter(logging.Formatter):
    converter = time.gmtime


class JsonFormatter(UtcFormatter):
    """One JSON object per record; `category` is lifted out of the context."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": self.formatTime(record),
            "ts_ms": int(record.created * 1000),
            "level": record.levelname,
            "logger": record.name,
            "event": record.getMessage(),
        }

        context = dict(getattr(record, "context", None) or {})
        category = context.pop("category", None)
        if category is not None:
            payload["category"] = category
        if context:
            payload["context"] = context
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)

        return json.dumps(payload, ensure_ascii=False, default=repr)


@lru_cache(None)
def get_logger(name: str = "meeting_meter") -> Logger:
    return logging.getLogger(name)


def safe_jsonable(x: Any) -> Any:
    """Reduce log context values to JSON types; enums log as their value."""
    if x is None or isinstance(x, (str, int, float, bool)):
        return x
    if isinstance(x, Enum):
        return safe_jsonable(x.value)
    if isinstance(x, Mapping):
        return {str(k): safe_jsonable(v) for k, v in x.items()}
    if isinstance(x, (list, tuple, set)):
        return [safe_jsonable(v) for v in x]
    return repr(x)


def _debug_module_matches(logger_name: str, module: str) -> bool:
    module = module.strip()
    if not module:
        return False
    if logger_name == module or logger_name.startswith(module + "."):
        return True
    return module in logger_name.split(".")


def _context(context: dict[str, Any]) -> dict[str, Any]:
    return {"context": safe_jsonable(context)}


def log_debug(logger: Logger, msg: str, **context):
    if not _DEBUG_ENABLED:
        return
    if _DEBUG_MODULES and not any(_debug_module_matches(logger.name, m) for m in _DEBUG_MODULES):
        return
    logger.debug(msg, extra=_context(context))


def log_info(logger: Logger, msg: str, **context):
    logger.info(msg, extra=_context(context))


def log_warn(logger: Logger, msg: str, **context):
    logger.warning(msg, extra=_context(context))


def log_error(logger: Logger, msg: str, **context):
    logger.error(msg, extra=_context(context))


def log_exception(logger: Logger, msg: str, **context):
    logger.exception(msg, extra=_context(context))

# ---------------------------------------------------------------------
# Domain-specific logging helpers
# ---------------------------------------------------------------------

def log_lifecycle(logger: Logger, msg: str, **context):
    """
    Ticker state transitions.
    Expected context: state, rate, interval_s, duration_s, emissions, reason
    """
    context["category"] = CATEGORY_LIFECYCLE
    logger.info(msg, extra=_context(context))


def log_termination(logger: Logger, msg: str, **context):
    """
    A termination strategy fired (or lost the race).
    Expected context: strategy, elapsed_s, won
    """
    context["category"] = CATEGORY_TERMINATION
    logger.info(msg, extra=_context(context))


def log_user_input(logger: Logger, msg: str, level: int = logging.INFO, **context):
    """
    Interactive entries: accepted totals and rejected lines.
    Expected context: raw, rate, entries
    """
    context["category"] = CATEGORY_INPUT
    logger.log(level, msg, extra=_context(context))
