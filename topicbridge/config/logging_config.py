# =============================================================================
# File: topicbridge/config/logging_config.py
# Description: Logging configuration using the Rich framework
# =============================================================================

import json
import logging
import logging.handlers
import os
import sys
from datetime import datetime
from typing import Optional, Dict, Any

from rich.box import HEAVY, MINIMAL, ROUNDED
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table
from rich.theme import Theme


def get_env_bool(key: str, default: bool = False) -> bool:
    """Get boolean value from environment variable."""
    value = os.getenv(key, '').lower()
    return value in ('true', '1', 'yes', 'on') if value else default


def get_env_int(key: str, default: int) -> int:
    """Get integer value from environment variable."""
    try:
        return int(os.getenv(key, str(default)))
    except ValueError:
        return default


BRIDGE_THEME = Theme({
    "debug": "magenta dim",
    "info": "green",
    "warning": "dark_goldenrod",
    "error": "red",
    "critical": "bold red",
    "success": "green3",
    "timestamp": "grey70",
    "logger_name": "grey35",
    "message": "grey85",
    "dim": "bright_black",
    "frame": "bright_blue",
    "header": "bold cyan",
})

PLAIN_FORMAT = "[%(asctime)s] [%(levelname)-8s] [%(name)-36s] %(message)s"
PLAIN_DATEFMT = "%Y-%m-%d %H:%M:%S"

# Third-party and internal loggers with a default level below the root level
DEFAULT_NOISE_CONFIG: Dict[str, int] = {
    "asyncio": logging.WARNING,
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "telegram": logging.WARNING,
    "telegram.ext": logging.WARNING,
    "redis": logging.WARNING,
    "PIL": logging.WARNING,
    "prometheus_client": logging.WARNING,
    "granian": logging.WARNING,
    "granian.access": logging.WARNING,
    "fastapi": logging.WARNING,
    "starlette": logging.WARNING,
    "multipart": logging.WARNING,

    # topicbridge components
    "topicbridge.bridge.keyed_queue": logging.INFO,
    "topicbridge.infra.reliability.retry": logging.WARNING,
}


class BridgeRichHandler(RichHandler):
    """RichHandler with the bridge's defaults (short paths, rich tracebacks)."""

    def __init__(self, *args, **kwargs):
        kwargs.setdefault("show_path", get_env_bool("LOG_SHOW_PATH", False))
        kwargs.setdefault("rich_tracebacks", True)
        kwargs.setdefault("markup", False)
        kwargs.setdefault("log_time_format", "[%H:%M:%S]")
        super().__init__(*args, **kwargs)


class JsonLineFormatter(logging.Formatter):
    """One JSON object per line, with bridge routing fields passed via `extra=`."""

    ROUTING_FIELDS = ("source_chat_id", "topic_id", "origin_id", "queue_key", "outcome")

    def format(self, record: logging.LogRecord) -> str:
        line = {
            "ts": datetime.fromtimestamp(record.created).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        line.update({f: getattr(record, f) for f in self.ROUTING_FIELDS if hasattr(record, f)})
        if record.exc_info:
            line["exc"] = self.formatException(record.exc_info)
        return json.dumps(line, ensure_ascii=False, default=str)


def setup_logging(
        service_name: str = "topicbridge",
        log_level: Optional[str] = None,
        log_file: Optional[str] = None,
        enable_json: Optional[bool] = None,
) -> None:
    """
    Configure logging.

    Args:
        service_name: Name of the service (used for the startup logger)
        log_level: Override log level (defaults to LOG_LEVEL or INFO)
        log_file: Optional rotating log file path (defaults to LOG_FILE)
        enable_json: Enable JSON formatting for production (defaults to LOG_JSON_FORMAT)
    """
    level = (log_level or os.getenv("LOG_LEVEL", "INFO")).upper()
    log_file = log_file or os.getenv("LOG_FILE")

    if enable_json is None:
        enable_json = get_env_bool('LOG_JSON_FORMAT', False)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    use_rich = not enable_json and (sys.stdout.isatty() or get_env_bool("FORCE_COLOR", False))

    if use_rich:
        console = Console(
            theme=BRIDGE_THEME,
            force_terminal=get_env_bool("FORCE_COLOR", False),
            width=get_env_int('LOG_CONSOLE_WIDTH', 0) or None,
        )
        root_logger.addHandler(BridgeRichHandler(console=console))

    elif enable_json:
        json_handler = logging.StreamHandler(sys.stdout)
        json_handler.setFormatter(JsonLineFormatter())
        root_logger.addHandler(json_handler)

    else:
        plain_handler = logging.StreamHandler(sys.stdout)
        plain_handler.setFormatter(logging.Formatter(PLAIN_FORMAT, datefmt=PLAIN_DATEFMT))
        root_logger.addHandler(plain_handler)

    if log_file:
        file_handler = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=get_env_int('LOG_MAX_SIZE_MB', 100) * 1024 * 1024,
            backupCount=get_env_int('LOG_BACKUP_COUNT', 5),
            encoding=os.getenv('LOG_FILE_ENCODING', 'utf-8'),
        )
        # Files always get the plain format
        file_handler.setFormatter(logging.Formatter(PLAIN_FORMAT, datefmt=PLAIN_DATEFMT))
        root_logger.addHandler(file_handler)

    for logger_name, default_level in DEFAULT_NOISE_CONFIG.items():
        logging.getLogger(logger_name).setLevel(default_level)

    # LOGLEVEL_TOPICBRIDGE_BRIDGE_CONTROLLER=DEBUG -> topicbridge.bridge.controller
    for key, value in os.environ.items():
        if not key.startswith('LOGLEVEL_'):
            continue
        logger_name = key[len('LOGLEVEL_'):].lower().replace('_', '.')
        level_value = logging.getLevelName(value.upper())
        if isinstance(level_value, int):
            logging.getLogger(logger_name).setLevel(level_value)

    logging.getLogger(f"{service_name}.startup").info(f"Logging configured for {service_name} service")


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance with the given name.

    Args:
        name: Logger name, "topicbridge.<area>" by convention

    Returns:
        Configured logger instance
    """
    return logging.getLogger(name)


def log_section(logger: logging.Logger, title: str):
    """Log a section separator"""
    if not sys.stdout.isatty():
        logger.info(f"{'=' * 60}")
        logger.info(f"  {title.upper()}")
        logger.info(f"{'=' * 60}")
        return

    console = Console(theme=BRIDGE_THEME)
    console.print()
    console.print(Panel(
        f"[bold]{title.upper()}[/bold]",
        box=HEAVY,
        border_style="frame",
        padding=(0, 1),
        width=min(console.width - 2, 80),
    ))
    console.print()


def log_metrics_table(logger: logging.Logger, title: str, metrics: Dict[str, Any]):
    """Log metrics in a table (plain key/value lines when not on a TTY)"""
    if not sys.stdout.isatty():
        logger.info(f"{title}:")
        for key, value in metrics.items():
            logger.info(f"  {key}: {value}")
        return

    console = Console(theme=BRIDGE_THEME)

    table = Table(
        title=title,
        show_header=True,
        header_style="white on grey30",
        box=MINIMAL,
        padding=(0, 1)
    )
    table.add_column("Metric", style="cyan", width=30)
    table.add_column("Value", style="white", justify="right", width=15)

    for key, value in metrics.items():
        formatted_key = key.replace('_', ' ').title()
        if isinstance(value, float):
            formatted_value = f"{value:,.2f}"
        elif isinstance(value, int):
            formatted_value = f"{value:,}"
        else:
            formatted_value = str(value)
        table.add_row(formatted_key, formatted_value)

    console.print()
    console.print(Panel(
        table,
        border_style="bright_blue",
        box=ROUNDED,
        padding=(1, 1),
        width=min(console.width - 2, 60),
    ))
    console.print()
