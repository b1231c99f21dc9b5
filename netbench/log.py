import logging
import sys

LOGGER_NAME = 'netbench'
LOG_FORMAT = '%(asctime)s [%(levelname)s] %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


def setup_logger(verbose: bool = False, stream=None) -> logging.Logger:
    """Configure the package logger and return it

    Diagnostics go to stderr. Verbose runs log at DEBUG, quiet runs only
    report warnings and errors. Calling this again replaces the handler, so
    the CLI and tests can reconfigure freely.

    Args:
        verbose: Enable debug output
        stream: Output stream, defaults to sys.stderr

    Returns:
        The configured "netbench" logger
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.DEBUG if verbose else logging.WARNING)

    for handler in list(logger.handlers):
        logger.removeHandler(handler)

    handler = logging.StreamHandler(stream if stream is not None else sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
    logger.addHandler(handler)
    logger.propagate = False
    return logger
