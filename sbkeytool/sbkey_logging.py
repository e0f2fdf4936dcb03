# @file sbkey_logging.py
# Handle basic logging config for the sbkeytool command-line tools;
# console output plus an optional plain-text log file.
##
# Copyright (c) Microsoft Corporation
#
# SPDX-License-Identifier: BSD-2-Clause-Patent
##
"""Handles basic logging config for the sbkeytool command-line tools.

sbkey_logging always scrubs PEM private key blocks from log records. The
external tools run by the key generator can echo key material into their
output, and that output is logged when a step fails.

Records from loggers outside the allowed list are only shown at WARNING and
above unless verbose logging was requested.
"""

import logging
import os
import re
from typing import Optional, Union

try:
    from edk2toollib.log import ansi_handler
except ImportError:
    ansi_handler = None
try:
    from edk2toollib.log import file_handler
except ImportError:
    file_handler = logging


# section marks the start of a key role, progress marks a finished artifact
# both sit high enough that they won't get filtered out
SECTION = logging.CRITICAL + 2  # just above critical
PROGRESS = logging.CRITICAL - 1  # just below critical

PRIVATE_KEY_REDACTION = "<private key redacted>"


def get_section_level() -> int:
    """Returns SECTION."""
    return SECTION


def get_progress_level() -> int:
    """Returns PROGRESS."""
    return PROGRESS


def get_sbkey_filter(verbose: bool = False) -> logging.Filter:
    """Returns an sbkeytool filter."""
    sbkey_filter = SbKeyLogFilter()
    if verbose:
        sbkey_filter.setVerbose(verbose)
    return sbkey_filter


def log_section(message: str) -> None:
    """Creates a logging message at the section level."""
    logging.log(get_section_level(), message)


def log_progress(message: str) -> None:
    """Creates a logging message at the progress level."""
    logging.log(get_progress_level(), message)


def setup_section_level() -> None:
    """Registers the SECTION and PROGRESS level names."""
    section_level = get_section_level()
    progress_level = get_progress_level()
    if logging.getLevelName(section_level) != "SECTION":
        logging.addLevelName(section_level, "SECTION")
    if logging.getLevelName(progress_level) != "PROGRESS":
        logging.addLevelName(progress_level, "PROGRESS")


# creates the the plaintext logger
def setup_txt_logger(
    directory: str,
    filename: str = "genkey_log",
    logging_level: int = logging.INFO,
    formatter: Optional[logging.Formatter] = None,
    logging_namespace: Optional[str] = "",
    isVerbose: bool = False,
) -> tuple:
    """Configures a text logger.

    Returns:
        (tuple): the path of the log file and the handler writing to it
    """
    logger = logging.getLogger(logging_namespace)
    log_formatter = formatter
    if log_formatter is None:
        log_formatter = logging.Formatter("%(asctime)s %(levelname)s - %(message)s")

    if not os.path.isdir(directory):
        os.makedirs(directory)

    logfile_path = os.path.join(directory, filename + ".txt")

    # delete file before starting a new log
    if os.path.isfile(logfile_path):
        os.remove(logfile_path)

    filelogger = file_handler.FileHandler(filename=(logfile_path), mode="a")
    filelogger.setLevel(logging_level)
    filelogger.setFormatter(log_formatter)
    filelogger.addFilter(get_sbkey_filter(isVerbose))
    logger.addHandler(filelogger)

    return logfile_path, filelogger


# sets up a colored console logger
def setup_console_logging(
    logging_level: int = logging.INFO,
    formatter: Optional[str] = None,
    logging_namespace: Optional[str] = "",
    isVerbose: bool = False,
    use_color: bool = True,
) -> logging.Handler:
    """Configures a console logger.

    A colored handler from edk2toollib is used when it is available and
    use_color is set, otherwise a plain StreamHandler.
    """
    if formatter is None and isVerbose:
        formatter_msg = "%(name)s: %(levelname)s - %(message)s"
    elif formatter is None:
        formatter_msg = "%(levelname)s - %(message)s"
    else:
        formatter_msg = formatter

    logger = logging.getLogger(logging_namespace)

    if use_color and ansi_handler:
        handler = ansi_handler.ColoredStreamHandler()
        handler.setFormatter(ansi_handler.ColoredFormatter(formatter_msg))
    else:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(formatter_msg))

    handler.setLevel(logging_level)
    handler.addFilter(get_sbkey_filter(isVerbose))
    logger.addHandler(handler)
    return handler


def stop_logging(
    loghandle: Union[list[logging.Handler], logging.Handler], logging_namespace: Optional[str] = ""
) -> None:
    """Stops logging on a log handle."""
    logger = logging.getLogger(logging_namespace)
    if loghandle is None:
        return
    if isinstance(loghandle, list):
        # if it's an array, process each element as a handle
        for handle in loghandle:
            handle.close()
            logger.removeHandler(handle)
    else:
        loghandle.close()
        logger.removeHandler(loghandle)


class SbKeyLogFilter(logging.Filter):
    """Subclass of logging.Filter."""

    _allowedLoggers = ["root", "sbkeytool"]

    private_key_regex = re.compile(
        r"-----BEGIN ([A-Z ]*)PRIVATE KEY-----.*?-----END \1PRIVATE KEY-----", re.DOTALL
    )

    def __init__(self) -> None:
        """Inits a filter."""
        logging.Filter.__init__(self)
        self._verbose = False

    def setVerbose(self, isVerbose: bool = True) -> None:
        """Sets the filter verbosity."""
        self._verbose = isVerbose

    def filter(self, record: logging.LogRecord) -> bool:
        """Drops quiet records from foreign loggers and scrubs private keys."""
        allowed = record.name in SbKeyLogFilter._allowedLoggers or record.name.startswith("sbkeytool.")
        if not allowed and record.levelno < logging.WARNING and not self._verbose:
            return False
        message = record.getMessage()
        if "PRIVATE KEY-----" in message:
            record.msg = self.private_key_regex.sub(PRIVATE_KEY_REDACTION, message)
            record.args = None
        return True
