"""Ownership and sequencing of the single protocol master."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from enum import Enum

from mbcli.core.dispatch import CommandDispatcher, parse_command
from mbcli.core.model import EffectiveConfig, TransportKind
from mbcli.core.output import OutputController
from mbcli.core.protocols import ConnectionHandle, ProtocolMaster
from mbcli.core.taps import CONNECTION_LOGGER, attach_connection_taps, attach_transaction_taps
from mbcli.master.master import create_master
from mbcli.transports import factory

LOGGER = logging.getLogger(__name__)

Connector = Callable[[EffectiveConfig], Awaitable[factory.OpenedConnection]]
MasterFactory = Callable[[EffectiveConfig, ConnectionHandle], ProtocolMaster]


class State(Enum):
    IDLE = "idle"
    OPENING = "opening"
    CONNECTED = "connected"
    DISPATCHING = "dispatching"
    LOOPING = "looping"
    CLOSED = "closed"


class MasterLifecycle:
    """Open the connection, dispatch the command (repeatedly in loop mode)
    and close.

    :meth:`run` returns the exit code for protocol-level outcomes and raises
    :class:`~mbcli.core.errors.MbcliError` for configuration, argument and
    connection failures. The master is always released before returning.
    """

    def __init__(
        self,
        config: EffectiveConfig,
        tokens: Sequence[str],
        output: OutputController,
        *,
        connect: Connector | None = None,
        master_factory: MasterFactory | None = None,
    ) -> None:
        self.config = config
        self.tokens = list(tokens)
        self.output = output
        self.dispatcher = CommandDispatcher(output)
        self.state = State.IDLE
        self.master: ProtocolMaster | None = None
        self._connect = connect or factory.connect
        self._master_factory = master_factory or create_master

    def _on_connected(self) -> None:
        self.state = State.CONNECTED
        self.output.mark_start()
        logging.getLogger(CONNECTION_LOGGER).info("[master#connected]")

    async def run(self) -> int:
        self.state = State.OPENING
        try:
            opened = await self._connect(self.config)
            master = self._master_factory(opened.config, opened.connection)
            self.master = master

            attach_connection_taps(
                master.connection,
                as_text=opened.config.transport is TransportKind.ASCII,
            )
            attach_transaction_taps(master)
            master.connection.on("error", self.output.connection_error)
            master.once("connected", self._on_connected)

            await master.connect()
            command = parse_command(self.tokens)
            while True:
                self.state = State.DISPATCHING
                code = await self.dispatcher.dispatch(command, master)
                if code is not None:
                    return code
                self.state = State.LOOPING
                await asyncio.sleep(0)
        finally:
            await self.close()

    async def close(self) -> None:
        """Release the master; errors during release are dropped."""
        self.state = State.CLOSED
        master, self.master = self.master, None
        if master is None:
            return
        try:
            await master.destroy()
        except Exception as exc:
            LOGGER.debug("Ignoring error while closing master: %s", exc)
