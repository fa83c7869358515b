"""
Centralized logging for Agent Fleet Bot.

Standardized per-module log files with human-readable or JSON formatting,
plus a decision trace log that follows one token through an agent's cycle
(signal -> advisory -> trade).

Usage:
    from bot_logging.logger_manager import setup_module_logger, create_module_log_directories

    create_module_log_directories()
    logger = setup_module_logger("signal_engine", "signal_engine.log", module_folder="Signal_Logs")
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from config.loader import get_config

# Resolve project root
_PROJECT_ROOT = Path(__file__).parent.parent

_logging_config = get_config().get_app_config().get("logging", {})

_LOG_DIR = str(_PROJECT_ROOT / _logging_config.get("log_dir", "logs"))
_LOG_LEVEL = getattr(logging, str(_logging_config.get("level", "INFO")).upper(), logging.INFO)
_MODULE_FOLDERS: dict[str, str] = _logging_config.get(
    "module_folders",
    {
        "fleet_runner": "Fleet_Logs",
        "agent_runner": "Agent_Logs",
        "signal_engine": "Signal_Logs",
        "data_service": "Data_Service_Logs",
        "vault_client": "Execution_Logs",
        "advisory_client": "Advisory_Logs",
        "main": "Main_Logs",
    },
)
_TRACE_FOLDER = "Decision_Trace_Logs"

# Extra record attributes surfaced by the JSON formatter
_EXTRA_FIELDS = ("trace_id", "agent", "strategy", "token", "score", "tx_ref", "error")


# ============================================================================
# FORMATTERS
# ============================================================================


class JSONFormatter(logging.Formatter):
    """One JSON object per line, with agent/token context when supplied via ``extra``."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "function": record.funcName,
            "line": record.lineno,
        }
        for key in _EXTRA_FIELDS:
            if hasattr(record, key):
                log_entry[key] = getattr(record, key)
        if record.exc_info and record.exc_info[0] is not None:
            log_entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry, default=str)


class HumanReadableFormatter(logging.Formatter):
    """Pretty-printed log formatter for console and human-readable files."""

    FORMAT = "%(asctime)s | %(levelname)-8s | %(name)-24s | %(message)s"
    DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

    def __init__(self) -> None:
        super().__init__(fmt=self.FORMAT, datefmt=self.DATE_FORMAT)


# ============================================================================
# LOGGER FACTORY
# ============================================================================

_logger_cache: dict[str, logging.Logger] = {}


def create_module_log_directories() -> dict[str, str]:
    """
    Create the logs/ folder tree for every configured module.

    Returns dict mapping module key to absolute folder path.
    """
    created = {}
    os.makedirs(_LOG_DIR, exist_ok=True)
    for key, folder_name in _MODULE_FOLDERS.items():
        folder_path = os.path.join(_LOG_DIR, folder_name)
        os.makedirs(folder_path, exist_ok=True)
        created[key] = folder_path
    os.makedirs(os.path.join(_LOG_DIR, _TRACE_FOLDER), exist_ok=True)
    return created


def module_folder_for(module_key: str) -> str:
    """Folder configured for a module key, falling back to a CamelCase default."""
    default = "_".join(part.capitalize() for part in module_key.split("_")) + "_Logs"
    return _MODULE_FOLDERS.get(module_key, default)


def setup_module_logger(
    name: str,
    log_file: str,
    level: int | None = None,
    module_folder: str | None = None,
    use_json_formatter: bool = False,
    console: bool = False,
) -> logging.Logger:
    """
    Create a module-specific logger writing to logs/<module_folder>/<log_file>.

    Args:
        name: Logger name (unique per module or per agent).
        log_file: Log filename.
        level: Logging level; defaults to app.json logging.level.
        module_folder: Subfolder within logs/. Defaults to the folder
            configured for ``name`` in app.json.
        use_json_formatter: Structured JSON lines instead of human-readable.
        console: Also echo to stderr (used by the entrypoint).

    Returns:
        Configured logging.Logger instance. Repeated calls return the same
        logger without stacking handlers.
    """
    folder = module_folder or module_folder_for(name)
    cache_key = f"{name}:{folder}:{log_file}"
    if cache_key in _logger_cache:
        return _logger_cache[cache_key]

    effective_level = level if level is not None else _LOG_LEVEL
    logger = logging.getLogger(name)
    logger.setLevel(effective_level)

    if logger.handlers:
        _logger_cache[cache_key] = logger
        return logger

    log_path = os.path.join(_LOG_DIR, folder, log_file)
    os.makedirs(os.path.dirname(log_path), exist_ok=True)

    formatter: logging.Formatter
    if use_json_formatter:
        formatter = JSONFormatter()
    else:
        formatter = HumanReadableFormatter()

    file_handler = logging.FileHandler(log_path, mode="a", encoding="utf-8")
    file_handler.setLevel(effective_level)
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)

    if console:
        stream_handler = logging.StreamHandler(sys.stderr)
        stream_handler.setLevel(effective_level)
        stream_handler.setFormatter(HumanReadableFormatter())
        logger.addHandler(stream_handler)

    logger.propagate = False

    _logger_cache[cache_key] = logger
    return logger


_trace_logger: logging.Logger | None = None


def get_trace_logger() -> logging.Logger:
    """Lazily create the JSON decision trace logger."""
    global _trace_logger
    if _trace_logger is None:
        _trace_logger = setup_module_logger(
            "decision_trace",
            "decision_trace.log",
            module_folder=_TRACE_FOLDER,
            use_json_formatter=True,
        )
    return _trace_logger


# ============================================================================
# DECISION TRACE HELPERS
# ============================================================================


def _emit_trace(event: str, trace_id: str, agent: str, fields: dict[str, Any]) -> None:
    payload = {
        "event": event,
        "trace_id": trace_id,
        "agent": agent,
        **fields,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    get_trace_logger().info(json.dumps(payload, default=str))


def log_data_entry(trace_id: str, agent: str, stage: str, token: str, data: Any) -> None:
    """Record an input entering a decision stage (e.g. a scored signal)."""
    _emit_trace("DATA_ENTRY", trace_id, agent, {"stage": stage, "token": token, "data": data})


def log_data_processing(
    trace_id: str,
    agent: str,
    stage: str,
    token: str,
    input_data: Any,
    output_data: Any,
) -> None:
    """Record a transformation inside a stage (e.g. signal -> advisory decision)."""
    _emit_trace(
        "DATA_PROCESSING",
        trace_id,
        agent,
        {"stage": stage, "token": token, "input": input_data, "output": output_data},
    )


def log_data_output(trace_id: str, agent: str, stage: str, token: str, outcome: str, data: Any = None) -> None:
    """Record the final outcome of a decision chain (bought, skipped, sold)."""
    _emit_trace(
        "DATA_OUTPUT",
        trace_id,
        agent,
        {"stage": stage, "token": token, "outcome": outcome, "data": data},
    )
