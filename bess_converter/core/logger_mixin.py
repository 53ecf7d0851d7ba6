"""
Component-scoped loggers.

Kept free of configuration imports so that any module can log.
"""

from loguru import logger

DEFAULT_COMPONENT = "bess_converter"


def get_logger(name: str = DEFAULT_COMPONENT):
    """Logger whose records carry `name` as their component"""
    return logger.bind(component=name)


class LoggerMixin:
    """Gives a class a `logger` attributed to the class name"""

    @property
    def logger(self):
        return get_logger(type(self).__name__)
