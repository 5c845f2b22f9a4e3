import logging
import sys

import colorama
import structlog

colorama.init(autoreset=True)


def configure_structlog(level=logging.INFO, colors=None):
    """Setup structlog on top of stdlib logging for the CLI.

    Stack names bound with ``structlog.contextvars`` show up on every line, which
    keeps interleaved output of parallel runs readable. Colours default to on
    when stderr is a terminal.
    """
    if colors is None:
        colors = sys.stderr.isatty()

    logging.basicConfig(format="%(message)s", stream=sys.stderr)
    logging.getLogger().setLevel(level)
    # boto's own debug output drowns out stack events
    logging.getLogger("botocore").setLevel(max(level, logging.INFO))

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.dev.ConsoleRenderer(colors=colors),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.make_filtering_bound_logger(level),
        # Loggers are created at import time and --debug reconfigures afterwards
        cache_logger_on_first_use=False,
    )
