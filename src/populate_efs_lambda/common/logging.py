"""Structured logging for the populate handlers.

Handlers log through an AWS Lambda Powertools `Logger`. The archive and path
modules use plain `logging.getLogger(__name__)` loggers, whose records are
routed through the handler's JSON formatter once `route_to_handler_log` has
attached it to the root logger.
"""

import logging
from typing import Optional, Union

from aibs_informatics_core.utils.logging import get_all_handlers
from aibs_informatics_core.utils.os_operations import get_env_var
from aws_lambda_powertools.logging import Logger

from populate_efs_lambda.common.base import HandlerMixins

SERVICE_NAME = "populate-efs"
POWERTOOLS_SERVICE_NAME_ENV_VAR = "POWERTOOLS_SERVICE_NAME"

LOGGER_ATTR = "_log"


class LoggingMixins(HandlerMixins):
    """Gives a handler its own Powertools logger, created on first use."""

    @property
    def log(self) -> Logger:
        log = getattr(self, LOGGER_ATTR, None)
        if log is None:
            log = self.get_logger(self.service_name())
            self.log = log
        return log

    @log.setter
    def log(self, value: Logger):
        setattr(self, LOGGER_ATTR, value)

    @classmethod
    def get_logger(cls, service: Optional[str] = None, add_to_root: bool = False) -> Logger:
        return get_service_logger(service=service, add_to_root=add_to_root)

    def route_to_handler_log(self):
        attach_to_logger(self.log)


def get_service_logger(
    service: Optional[str] = None, child: bool = False, add_to_root: bool = False
) -> Logger:
    """Create a Powertools logger.

    Args:
        service (Optional[str]): Service name. Defaults to POWERTOOLS_SERVICE_NAME,
            then to 'populate-efs'.
        child (bool): Create a child of the service logger instead of a new one.
        add_to_root (bool): Also route root logger records through this logger's handler.
    """
    service = service or get_env_var(POWERTOOLS_SERVICE_NAME_ENV_VAR, default_value=SERVICE_NAME)
    service_logger = Logger(service=service, child=child)
    if add_to_root:
        attach_to_logger(service_logger)
    return service_logger


def attach_to_logger(
    source: Logger, target: Union[str, logging.Logger, None] = None
) -> logging.Logger:
    """Send the records of a standard library logger through the handler of `source`.

    A target given by name (None for the root logger) is lowered to the level
    of `source`, so debug records from module loggers are not dropped when the
    handler logs at debug.
    """
    if not isinstance(target, logging.Logger):
        target = logging.getLogger(target)
        target.setLevel(min(source.log_level, target.getEffectiveLevel()))

    if source.registered_handler not in get_all_handlers(target):
        target.addHandler(source.registered_handler)
    return target
