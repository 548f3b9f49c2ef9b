"""Diagnostic logging for connection and transaction events.

The handlers here only log. They never touch the lifecycle state, so the
master behaves the same with or without them attached.
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Any

from mbcli.core.protocols import ProtocolMaster

CONNECTION_LOGGER = "mbcli.connection"
TRANSACTION_LOGGER = "mbcli.transaction"

_FORMAT = "%(name)s %(levelname)s %(message)s"
_FILE_FORMAT = "%(asctime)s %(name)s %(levelname)s %(message)s"


def configure_logging(*, verbose: bool, structured_output: bool, log_file: Path | None) -> None:
    """Route the two diagnostic loggers.

    Connection events reach stdout only when *verbose* and not producing
    structured output; transaction events reach stdout unless producing
    structured output. Both are mirrored to *log_file* when given.
    """
    console = [
        (CONNECTION_LOGGER, verbose and not structured_output),
        (TRANSACTION_LOGGER, not structured_output),
    ]
    for name, to_console in console:
        logger = logging.getLogger(name)
        for handler in list(logger.handlers):
            logger.removeHandler(handler)
            handler.close()
        logger.setLevel(logging.DEBUG)
        logger.propagate = False

        if to_console:
            stream = logging.StreamHandler(sys.stdout)
            stream.setFormatter(logging.Formatter(_FORMAT))
            logger.addHandler(stream)
        if log_file is not None:
            sink = logging.FileHandler(log_file, encoding="utf-8")
            sink.setFormatter(logging.Formatter(_FILE_FORMAT))
            logger.addHandler(sink)
        if not logger.handlers:
            logger.addHandler(logging.NullHandler())


def _render(data: bytes, as_text: bool) -> str:
    if as_text:
        return data.decode("ascii", errors="replace").strip()
    return f"<{data.hex(' ')}>"


def attach_connection_taps(connection: Any, *, as_text: bool = False) -> None:
    log = logging.getLogger(CONNECTION_LOGGER)
    connection.on("open", lambda: log.info("[connection#open]"))
    connection.on("close", lambda: log.info("[connection#close]"))
    connection.on("error", lambda err: log.error("[connection#error] %s", err))
    connection.on("write", lambda data: log.info("[TX] %s", _render(data, as_text)))
    connection.on("data", lambda data: log.info("[RX] %s", _render(data, as_text)))


def _watch_transaction(transaction: Any) -> None:
    log = logging.getLogger(TRANSACTION_LOGGER)

    def on_response(response: Any) -> None:
        if response.is_exception:
            log.error("[response] %s", response)
        else:
            log.info("%s", response)

    def on_complete(error: Exception | None, response: Any) -> None:
        if error is not None:
            log.error("[complete] %s", error)
        else:
            log.info("[complete] %s", response)

    transaction.on("timeout", lambda: log.warning("[timeout]"))
    transaction.once("error", lambda err: log.error("[error] %s", err))
    transaction.once("response", on_response)
    transaction.once("complete", on_complete)
    transaction.once("cancel", lambda: log.warning("[cancel]"))
    log.info("%s", transaction.request)


def attach_transaction_taps(master: ProtocolMaster) -> None:
    log = logging.getLogger(TRANSACTION_LOGGER)
    master.transport.on("request", _watch_transaction)
    master.transport.on("error", lambda err: log.warning("[framing] %s", err))
