"""
Structured logging setup.

Level and output format default to the KATA_MANAGER_LOG_LEVEL and
KATA_MANAGER_LOG_FORMAT environment variables (INFO, console).
"""

import logging
import os
import sys

import structlog

_configured = False


def configure_logging(level=None, fmt=None, force=False):
    global _configured

    if _configured and not force:
        return

    log_level = (level or os.environ.get('KATA_MANAGER_LOG_LEVEL', 'INFO')).upper()
    log_format = (fmt or os.environ.get('KATA_MANAGER_LOG_FORMAT', 'console')).lower()
    if log_level not in ('DEBUG', 'INFO', 'WARNING', 'ERROR'):
        raise ValueError(f'Invalid log level: {log_level!r}')

    processors = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt='iso', utc=True),
        structlog.processors.format_exc_info,
        structlog.processors.StackInfoRenderer(),
    ]
    if log_format == 'json':
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format='%(message)s',
        stream=sys.stderr,
        level=getattr(logging, log_level),
        force=True,
    )
    logging.getLogger('katamanager').setLevel(getattr(logging, log_level))

    _configured = True
