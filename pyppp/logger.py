# Copyright 2024 inuex35
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""Logging configuration for the PPP solver.

Modules log through ``logging.getLogger(__name__)`` under the ``pyppp``
hierarchy; solver instances wrap that logger in a StationLoggerAdapter so
every message carries the station/run identifier.
"""

import logging
import sys
from enum import Enum
from typing import Optional

ROOT_LOGGER = "pyppp"


class LogLevel(Enum):
    """Log levels for the solver"""
    TRACE = 5
    DEBUG = logging.DEBUG
    INFO = logging.INFO
    WARNING = logging.WARNING
    ERROR = logging.ERROR
    CRITICAL = logging.CRITICAL


logging.addLevelName(LogLevel.TRACE.value, "TRACE")


def _level(level: str) -> int:
    try:
        return LogLevel[level.upper()].value
    except KeyError:
        raise ValueError(f"Unknown log level: {level}") from None


class ColoredFormatter(logging.Formatter):
    """Colored log formatter for terminals"""

    COLORS = {
        'TRACE': '\033[36m',     # Cyan
        'DEBUG': '\033[34m',     # Blue
        'INFO': '\033[32m',      # Green
        'WARNING': '\033[33m',   # Yellow
        'ERROR': '\033[31m',     # Red
        'CRITICAL': '\033[35m',  # Magenta
    }
    RESET = '\033[0m'

    def format(self, record):
        record = logging.makeLogRecord(record.__dict__)
        log_color = self.COLORS.get(record.levelname, self.RESET)
        record.levelname = f"{log_color}{record.levelname}{self.RESET}"
        return super().format(record)


class StationLoggerAdapter(logging.LoggerAdapter):
    """Prefix every message with the station or run identifier"""

    def __init__(self, logger: logging.Logger, station: str):
        super().__init__(logger, {'station': station})

    def process(self, msg, kwargs):
        return f"[{self.extra['station']}] {msg}", kwargs

    def trace(self, msg, *args, **kwargs):
        self.log(LogLevel.TRACE.value, msg, *args, **kwargs)


def setup_logger(name: str = ROOT_LOGGER,
                 level: str = "INFO",
                 log_file: Optional[str] = None,
                 console: bool = True) -> logging.Logger:
    """
    Setup logger with specified configuration

    Parameters:
    -----------
    name : str
        Logger name; "pyppp" configures every solver module
    level : str
        Log level (TRACE, DEBUG, INFO, WARNING, ERROR, CRITICAL)
    log_file : Optional[str]
        Log file path (if None, no file logging)
    console : bool
        Enable console output

    Returns:
    --------
    logging.Logger
        Configured logger
    """
    numeric = _level(level)
    logger = logging.getLogger(name)
    logger.setLevel(numeric)
    logger.handlers = []

    if console:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(numeric)
        console_handler.setFormatter(ColoredFormatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            datefmt='%H:%M:%S'
        ))
        logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(numeric)
        file_handler.setFormatter(logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        ))
        logger.addHandler(file_handler)

    return logger


def get_logger(name: str) -> logging.Logger:
    """Get logger by name"""
    return logging.getLogger(name)


class LogContext:
    """Context manager for temporary log level change"""

    def __init__(self, logger: logging.Logger, level: str):
        self.logger = logger
        self.new_level = _level(level)
        self.old_level = None

    def __enter__(self):
        self.old_level = self.logger.level
        self.logger.setLevel(self.new_level)
        return self.logger

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.logger.setLevel(self.old_level)


class LoggerConfig:
    """Logger configuration manager for module-specific log levels"""

    def __init__(self):
        self.module_levels = {}
        self.default_level = "INFO"
        self.log_file = None
        self.console = True

    def set_module_level(self, module_name: str, level: str):
        """Set log level for a specific module such as 'pyppp.ppp.state_manager'"""
        numeric = _level(level)
        self.module_levels[module_name] = level
        logging.getLogger(module_name).setLevel(numeric)

    def get_level_for_module(self, module_name: str) -> str:
        return self.module_levels.get(module_name, self.default_level)

    def configure_from_dict(self, config: dict):
        """Configure from dictionary"""
        if 'default_level' in config:
            _level(config['default_level'])
            self.default_level = config['default_level']
        if 'log_file' in config:
            self.log_file = config['log_file']
        if 'console' in config:
            self.console = config['console']
        for module, level in config.get('module_levels', {}).items():
            self.module_levels[module] = level

    def setup_all_loggers(self) -> logging.Logger:
        """Configure the root solver logger; modules only get a level and propagate"""
        root = setup_logger(ROOT_LOGGER, self.default_level, self.log_file, self.console)
        for module, level in self.module_levels.items():
            self.set_module_level(module, level)
        return root


logger_config = LoggerConfig()


def setup_logger_from_config(config: dict) -> logging.Logger:
    """Setup loggers from configuration dictionary

    Example config:
    {
        'default_level': 'INFO',
        'log_file': 'ppp.log',
        'console': True,
        'module_levels': {
            'pyppp.ppp.state_manager': 'DEBUG',
            'pyppp.ppp.convergence': 'WARNING'
        }
    }
    """
    logger_config.configure_from_dict(config)
    return logger_config.setup_all_loggers()
