"""
Structured logging for the manual QA service.

Every module logs through the shared `logger` with key/value events, e.g.
    logger.info("Created chunks", document_id=doc_id, chunk_count=12)
"""

import logging
import os
import sys

import structlog

# Third-party loggers that are chatty at INFO during ingestion and retrieval
NOISY_LOGGERS = ("httpx", "openai", "aiohttp.access", "sentence_transformers", "pypdf")


def _build_processors(json_logs: bool) -> list:
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]
    if json_logs:
        processors += [
            structlog.processors.dict_tracebacks,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors += [
            structlog.dev.set_exc_info,
            structlog.dev.ConsoleRenderer(
                colors=sys.stdout.isatty(),
                exception_formatter=structlog.dev.plain_traceback,
            ),
        ]
    return processors


def setup_logging(log_level: str = "INFO", json_logs: bool = False):
    """
    Configure structlog and the stdlib root logger.

    Args:
        log_level: DEBUG, INFO, WARNING or ERROR; unknown names mean INFO
        json_logs: one JSON object per line (prod) instead of console output (dev)
    """
    level = getattr(logging, log_level.upper(), logging.INFO)

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level, force=True)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    structlog.configure(
        processors=_build_processors(json_logs),
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=False,
    )
    return structlog.get_logger(service="manualqa")


# Reconfigured from Settings at startup; env-driven here so imports log sensibly.
logger = setup_logging(
    log_level=os.getenv("LOG_LEVEL", "INFO"),
    json_logs=os.getenv("JSON_LOGS", "false").lower() in ("1", "true", "yes"),
)
