from .config import config
from .db import db, session_scope
from .logging_setup import logger, get_logger
from .exceptions import (
    RollupError, NotFoundError, UnresolvableItemError, InvalidWeekError,
    DuplicateReportError, NegativeCountError, ValidationError
)

__all__ = [
    'config',
    'db',
    'session_scope',
    'logger',
    'get_logger',
    'RollupError',
    'NotFoundError',
    'UnresolvableItemError',
    'InvalidWeekError',
    'DuplicateReportError',
    'NegativeCountError',
    'ValidationError'
]
