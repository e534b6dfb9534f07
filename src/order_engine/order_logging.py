import logging
from dotenv import load_dotenv
import os, sys
from typing import Dict

# Load environment variables
load_dotenv()

# Read the log level from the environment variable, defaulting to 'INFO'
logger_level = os.getenv('LOGGER_LEVEL', 'INFO').upper()
# Convert the string to a logging level
env_log_level = getattr(logging, logger_level, logging.INFO)

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s (file: %(filename)s, line: %(lineno)d)'

# every logger handed out by create_logger, by name
_loggers: Dict[str, 'OrderEngineLogger'] = {}
# prefix -> level set at runtime, applied to loggers created later too
_level_overrides: Dict[str, int] = {}


class OrderEngineLogger(logging.Logger):
    def __init__(self, name: str, level: int = None, propagate: bool = False):
        super().__init__(name)
        _level = level if level is not None else env_log_level
        module_log_level = os.getenv(f'LOGGER_LEVEL.{name}')
        # check if there is a specific log level for the module
        if module_log_level:
            _level = getattr(logging, module_log_level.upper(), _level)

        self.setLevel(_level)
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        self.addHandler(handler)
        self.propagate = propagate


# Generic logger creation function to be used by all modules
def create_logger(name: str, level: int = None, propagate: bool = False) -> OrderEngineLogger:
    if level is None:
        for prefix, override in _level_overrides.items():
            if name == prefix or name.startswith(prefix + '.'):
                level = override
    logger = OrderEngineLogger(name, level=level, propagate=propagate)
    _loggers[name] = logger
    return logger


def set_log_level(level: int, prefix: str = 'order_engine'):
    """Set ``level`` on every created logger whose name starts with ``prefix``."""
    _level_overrides[prefix] = level
    for name, logger in _loggers.items():
        if name == prefix or name.startswith(prefix + '.'):
            logger.setLevel(level)
