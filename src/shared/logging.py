import logging
import sys

from opentelemetry._logs import set_logger_provider
from opentelemetry.sdk._logs import LoggerProvider, LoggingHandler
from opentelemetry.sdk._logs.export import BatchLogRecordProcessor, ConsoleLogRecordExporter

from .config import settings

# Handlers attached to the root logger by setup_logging
_installed_handlers: list[logging.Handler] = []


def setup_logging(level: str | None = None) -> LoggerProvider:
    """Configure OpenTelemetry logging plus a stderr stream handler.

    stdout is left alone: the fetch CLI prints the written artifact paths there.
    Calling it again replaces the handlers of the previous call.
    """
    level_name = (level or settings.LOG_LEVEL).upper()
    reset_logging()

    # 1. Setup OpenTelemetry Logger Provider
    logger_provider = LoggerProvider()

    if settings.TELEMETRY_CONSOLE_EXPORT:
        console_exporter = ConsoleLogRecordExporter()
        logger_provider.add_log_record_processor(BatchLogRecordProcessor(console_exporter))

    set_logger_provider(logger_provider)

    # 2. Attach OTel LoggingHandler to Python's root logger
    handler = LoggingHandler(level=getattr(logging, level_name), logger_provider=logger_provider)

    # Operator-facing output
    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setFormatter(
        logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    )

    root = logging.getLogger()
    root.setLevel(level_name)
    for installed in (handler, stream_handler):
        root.addHandler(installed)
        _installed_handlers.append(installed)

    # Silence noisy libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

    return logger_provider


def reset_logging() -> None:
    """Detach the handlers installed by setup_logging."""
    root = logging.getLogger()
    while _installed_handlers:
        handler = _installed_handlers.pop()
        root.removeHandler(handler)
        handler.close()
