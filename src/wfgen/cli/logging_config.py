"""Logging configuration for CLI commands.

Library modules only create loggers; handlers are configured here, once, at
CLI startup.
"""

import logging
import os


def configure_logging(verbose: bool) -> None:
    """Configure logging levels based on the verbose flag.

    Args:
        verbose: If True, show DEBUG+ logs from wfgen. If False, WARNING+ only.
    """
    # Tests manage their own logging
    if os.getenv("PYTEST_CURRENT_TEST"):
        return

    level = logging.DEBUG if verbose else logging.WARNING
    if not logging.getLogger().handlers:
        logging.basicConfig(level=level, format="%(levelname)s: %(message)s")
    else:
        logging.getLogger().setLevel(level)

    # Connection-level chatter from the HTTP stack is never useful here
    for logger_name in ["httpx", "httpcore", "httpcore.http11", "httpcore.connection"]:
        logging.getLogger(logger_name).setLevel(logging.WARNING)

    logging.getLogger("wfgen").setLevel(level)
