"""
Logging configuration with verbosity control and multiple handlers.

Supports console, plain file, rotating file and null handlers, text or JSON
formatting, component filtering, and configuration from environment
variables (PIPEMSG_LOG_*) or from command-line options.
"""

import logging
import logging.handlers
import os
import sys
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Optional

from pipemsg.app_logger import AppLogger, LogContext, format_log_message


class LogHandler(Enum):
    """Available log handler types."""

    CONSOLE = "console"
    FILE = "file"
    ROTATING_FILE = "rotating"
    NULL = "null"


class LogFormat(Enum):
    """Available log format types."""

    STRUCTURED = "json"
    SIMPLE = "simple"
    DETAILED = "detailed"


class VerbosityLevel(Enum):
    """Verbosity levels and the log level each one implies."""

    QUIET = "WARNING"
    NORMAL = "INFO"
    VERBOSE = "DEBUG"


@dataclass
class HandlerConfig:
    """Configuration for a single log handler."""

    type: LogHandler
    level: Optional[str] = None
    filename: Optional[str] = None
    max_bytes: int = 10 * 1024 * 1024
    backup_count: int = 5
    stream: str = "stderr"
    date_format: str = "%Y-%m-%d %H:%M:%S"


@dataclass
class LoggingConfig:
    """Complete logging configuration."""

    verbosity: VerbosityLevel = VerbosityLevel.NORMAL
    level: Optional[str] = None
    format: LogFormat = LogFormat.SIMPLE
    logger_name: str = "pipemsg"
    handlers: List[HandlerConfig] = field(
        default_factory=lambda: [HandlerConfig(type=LogHandler.CONSOLE)]
    )
    exclude_components: List[str] = field(default_factory=list)

    @property
    def effective_level(self) -> str:
        """Explicit level if set, otherwise the level implied by verbosity."""
        return (self.level or self.verbosity.value).upper()


class ConfigurableAppLogger:
    """AppLogger that owns the handlers of the pipemsg logger hierarchy."""

    def __init__(self, config: Optional[LoggingConfig] = None):
        self.config = config or LoggingConfig()
        self._python_logger = logging.getLogger(self.config.logger_name)
        self._setup_logging()

    def _setup_logging(self) -> None:
        """Install handlers on the Python logger according to the configuration."""
        self._python_logger.setLevel(self.config.effective_level)
        for handler in list(self._python_logger.handlers):
            self._python_logger.removeHandler(handler)
            handler.close()

        for handler_config in self.config.handlers:
            self._python_logger.addHandler(self._create_handler(handler_config))

        self._python_logger.propagate = False

    def _create_handler(self, config: HandlerConfig) -> logging.Handler:
        if config.type == LogHandler.CONSOLE:
            stream = sys.stdout if config.stream == "stdout" else sys.stderr
            handler: logging.Handler = logging.StreamHandler(stream)
        elif config.type in (LogHandler.FILE, LogHandler.ROTATING_FILE):
            if not config.filename:
                raise ValueError(f"{config.type.value} handler requires a filename")
            Path(config.filename).parent.mkdir(parents=True, exist_ok=True)
            if config.type == LogHandler.ROTATING_FILE:
                handler = logging.handlers.RotatingFileHandler(
                    filename=config.filename,
                    maxBytes=config.max_bytes,
                    backupCount=config.backup_count,
                )
            else:
                handler = logging.FileHandler(config.filename)
        elif config.type == LogHandler.NULL:
            handler = logging.NullHandler()
        else:
            raise ValueError(f"Unknown handler type: {config.type}")

        handler.setLevel((config.level or self.config.effective_level).upper())
        handler.setFormatter(self._create_formatter(config))
        return handler

    def _create_formatter(self, config: HandlerConfig) -> logging.Formatter:
        if self.config.format == LogFormat.DETAILED:
            return logging.Formatter(
                fmt="%(asctime)s [%(levelname)s] %(threadName)s %(name)s: %(message)s",
                datefmt=config.date_format,
            )
        if self.config.format == LogFormat.SIMPLE:
            return logging.Formatter("%(levelname)s: %(message)s")
        # JSON lines are produced by format_log_message
        return logging.Formatter("%(message)s")

    def should_log_component(self, context: Optional[LogContext]) -> bool:
        return context is None or context.component not in self.config.exclude_components

    def reconfigure(self, new_config: LoggingConfig) -> None:
        """Reconfigure logging with new settings."""
        self.config = new_config
        self._python_logger = logging.getLogger(new_config.logger_name)
        self._setup_logging()

    def _format(self, message: str, context: Optional[LogContext], **kwargs) -> str:
        structured = self.config.format == LogFormat.STRUCTURED
        return format_log_message(message, context, structured, **kwargs)

    def debug(self, message: str, context: Optional[LogContext] = None, **kwargs) -> None:
        if self.should_log_component(context) and self._python_logger.isEnabledFor(
            logging.DEBUG
        ):
            self._python_logger.debug(self._format(message, context, **kwargs))

    def info(self, message: str, context: Optional[LogContext] = None, **kwargs) -> None:
        if self.should_log_component(context):
            self._python_logger.info(self._format(message, context, **kwargs))

    def warning(self, message: str, context: Optional[LogContext] = None, **kwargs) -> None:
        if self.should_log_component(context):
            self._python_logger.warning(self._format(message, context, **kwargs))

    def error(
        self,
        message: str,
        context: Optional[LogContext] = None,
        exc_info: bool = False,
        **kwargs,
    ) -> None:
        if self.should_log_component(context):
            self._python_logger.error(
                self._format(message, context, **kwargs), exc_info=exc_info
            )


def _handler_configs(names: str, log_file: Optional[str]) -> List[HandlerConfig]:
    """Translate a comma-separated handler list into handler configurations."""
    filename = log_file or "logs/pipemsg.log"
    configs = []
    for name in names.split(","):
        name = name.strip().lower()
        if name == "console":
            configs.append(HandlerConfig(type=LogHandler.CONSOLE))
        elif name == "file":
            configs.append(HandlerConfig(type=LogHandler.FILE, filename=filename))
        elif name == "rotating":
            configs.append(HandlerConfig(type=LogHandler.ROTATING_FILE, filename=filename))
        elif name == "null":
            configs.append(HandlerConfig(type=LogHandler.NULL))
    return configs


def create_logger_from_env() -> AppLogger:
    """Create a logger from PIPEMSG_LOG_* environment variables."""
    config = LoggingConfig()

    verbosity = os.getenv("PIPEMSG_LOG_VERBOSITY", "normal").lower()
    config.verbosity = {
        "quiet": VerbosityLevel.QUIET,
        "normal": VerbosityLevel.NORMAL,
        "verbose": VerbosityLevel.VERBOSE,
        "v": VerbosityLevel.VERBOSE,
    }.get(verbosity, VerbosityLevel.NORMAL)

    if level := os.getenv("PIPEMSG_LOG_LEVEL"):
        config.level = level.upper()

    format_name = os.getenv("PIPEMSG_LOG_FORMAT", "simple").lower()
    try:
        config.format = LogFormat(format_name)
    except ValueError:
        config.format = LogFormat.SIMPLE

    handlers = _handler_configs(
        os.getenv("PIPEMSG_LOG_HANDLERS", "console"), os.getenv("PIPEMSG_LOG_FILE")
    )
    if handlers:
        config.handlers = handlers

    if exclude := os.getenv("PIPEMSG_LOG_EXCLUDE"):
        config.exclude_components = [c.strip() for c in exclude.split(",")]

    return ConfigurableAppLogger(config)


def configure_logging(
    verbose: int = 0,
    quiet: bool = False,
    log_level: Optional[str] = None,
    log_format: str = "simple",
    log_file: Optional[str] = None,
) -> AppLogger:
    """
    Build and install the default logger from command-line style options.

    Args:
        verbose: Number of -v flags given
        quiet: Only warnings and errors
        log_level: Explicit level, overrides verbose/quiet
        log_format: "json", "simple" or "detailed"
        log_file: Also write to this file (rotating)

    Returns:
        The installed logger
    """
    from pipemsg.app_logger import set_default_logger

    config = LoggingConfig()
    if quiet:
        config.verbosity = VerbosityLevel.QUIET
    elif verbose > 0:
        config.verbosity = VerbosityLevel.VERBOSE

    if log_level:
        config.level = log_level.upper()

    try:
        config.format = LogFormat(log_format.lower())
    except ValueError:
        config.format = LogFormat.SIMPLE

    if log_file:
        config.handlers = [
            HandlerConfig(type=LogHandler.CONSOLE),
            HandlerConfig(type=LogHandler.ROTATING_FILE, filename=log_file),
        ]

    logger = ConfigurableAppLogger(config)
    set_default_logger(logger)
    return logger
