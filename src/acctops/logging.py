"""Structured logging for multi-account runs.

Every account runs in its own asyncio task; the runner binds ``account``
into structlog's contextvars for that task, so each event (including
records emitted by ccxt through stdlib logging) carries the account id.
"""

import logging
import os
from collections.abc import Iterator
from contextlib import contextmanager

import structlog

# Applied to structlog events and to foreign stdlib records (ccxt, asyncio)
_PRE_CHAIN: list[structlog.types.Processor] = [
    structlog.contextvars.merge_contextvars,
    structlog.stdlib.add_log_level,
    structlog.stdlib.add_logger_name,
    structlog.processors.TimeStamper(fmt="iso"),
]


def _renderer(log_format: str) -> structlog.types.Processor:
    if log_format == "json":
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer()


def setup_logging(log_level: str = "INFO") -> None:
    """Route structlog and stdlib records through one stderr handler.

    LOG_FORMAT=json emits one JSON object per event for log shipping;
    anything else renders coloured console lines. ccxt is held at WARNING
    because it logs every HTTP request at DEBUG.
    """
    renderer = _renderer(os.environ.get("LOG_FORMAT", "console").lower())

    structlog.configure(
        processors=[
            *_PRE_CHAIN,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler()
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=_PRE_CHAIN,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                renderer,
            ],
        )
    )

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    logging.getLogger("ccxt").setLevel(logging.WARNING)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Return a bound structlog logger with the given name."""
    return structlog.get_logger(name)


@contextmanager
def bound_account(account_id: str) -> Iterator[None]:
    """Bind ``account`` into the structlog context for the enclosed block.

    Each asyncio task runs in its own contextvars copy, so concurrent
    account tasks never see each other's binding.
    """
    with structlog.contextvars.bound_contextvars(account=account_id):
        yield
