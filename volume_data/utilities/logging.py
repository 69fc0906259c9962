import logging
import sys
from abc import ABC, abstractmethod

from volume_data.utilities.config import vdparams

# Setting up the logging system
streams = dict(
    mylog=getattr(sys, vdparams["logging", "mylog", "stream"]),
    devlog=getattr(sys, vdparams["logging", "devlog", "stream"]),
)
_loggers = dict(
    mylog=logging.Logger("volume_data"), devlog=logging.Logger("vd-development")
)

_handlers = {}

for k, v in _loggers.items():
    # Construct the formatter string.
    _handlers[k] = logging.StreamHandler(streams[k])
    _handlers[k].setFormatter(logging.Formatter(vdparams["logging", k, "format"]))
    v.addHandler(_handlers[k])
    v.setLevel(vdparams["logging", k, "level"])
    v.propagate = False

    if k != "mylog":
        v.disabled = not vdparams["logging", k, "enabled"]

mylog: logging.Logger = _loggers["mylog"]
""":py:class:`logging.Logger`: The main logger for ``volume_data``."""
devlog: logging.Logger = _loggers["devlog"]
""":py:class:`logging.Logger`: The development logger for ``volume_data``."""


class LogDescriptor(ABC):
    LOG_CLASS = logging.Logger  # Default to the standard Logger; can be overridden in subclasses

    def __get__(self, instance, owner) -> LOG_CLASS:
        if owner.__dict__.get("_logger") is None:
            # Fetch the logger default and then set the logger class to
            # the one specified by the descriptor class.
            original_logger_class = logging.getLoggerClass()
            logging.setLoggerClass(self.LOG_CLASS)

            try:
                # Get the logger as an instance of LOGCLASS
                owner._logger = logging.getLogger(f"volume_data.{owner.__name__}")
                self.configure_logger(owner._logger)
            finally:
                # Restore the original logging class
                logging.setLoggerClass(original_logger_class)

        return owner._logger

    @abstractmethod
    def configure_logger(self, logger):
        pass


class VolumeLogDescriptor(LogDescriptor):
    """Per-class logger sharing the ``mylog`` format and level."""

    def configure_logger(self, logger):
        _handler = logging.StreamHandler(streams["mylog"])
        _handler.setFormatter(logging.Formatter(vdparams["logging", "mylog", "format"]))
        if len(logger.handlers) == 0:
            logger.addHandler(_handler)
        logger.setLevel(vdparams["logging", "mylog", "level"])
        logger.propagate = False
