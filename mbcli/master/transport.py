"""Transaction bookkeeping between the master and a framed connection."""

from __future__ import annotations

import asyncio
import logging

from mbcli.core.errors import DeviceConnectionError, FramingError, ProtocolError, TransactionTimeoutError
from mbcli.core.events import EventEmitter
from mbcli.core.protocols import ConnectionHandle
from mbcli.master.framing import Frame, Framer
from mbcli.master.pdu import Request

LOGGER = logging.getLogger(__name__)


class Transaction(EventEmitter):
    """One request in flight.

    Emits ``timeout`` (per attempt), ``error``, ``response``, ``complete``
    (``error, response``) and ``cancel``.
    """

    def __init__(self, request: Request, unit: int, *, timeout_s: float, max_retries: int) -> None:
        super().__init__()
        self.request = request
        self.unit = unit
        self.timeout_s = timeout_s
        self.max_retries = max_retries
        self.attempts = 0

    def __str__(self) -> str:
        return f"unit {self.unit}: {self.request}"


class Transport(EventEmitter):
    """Frames requests onto a connection and matches responses to them.

    Emits ``request`` with the :class:`Transaction` before it is first sent,
    and ``error`` for received bytes that do not frame.
    """

    def __init__(
        self,
        framer: Framer,
        connection: ConnectionHandle,
        *,
        max_concurrent_requests: int = 1,
    ) -> None:
        super().__init__()
        self.framer = framer
        self._connection = connection
        # Without transaction ids a response can only belong to the oldest request.
        limit = max_concurrent_requests if framer.matches_transaction_id else 1
        self._slots = asyncio.Semaphore(max(1, limit))
        self._pending: dict[int, tuple[Transaction, asyncio.Future[Frame]]] = {}
        self._next_id = 0
        self._eof_handle: asyncio.TimerHandle | None = None
        connection.on("data", self._on_data)
        connection.on("close", self._on_close)

    async def execute(self, transaction: Transaction) -> bytes:
        """Send *transaction* and return the response PDU."""
        async with self._slots:
            self.emit("request", transaction)
            return await self._run(transaction)

    async def _run(self, transaction: Transaction) -> bytes:
        loop = asyncio.get_running_loop()
        for attempt in range(transaction.max_retries + 1):
            transaction.attempts = attempt + 1
            transaction_id = self._allocate_id()
            future: asyncio.Future[Frame] = loop.create_future()
            self._pending[transaction_id] = (transaction, future)
            frame_bytes = self.framer.encode(
                transaction.unit,
                transaction.request.to_bytes(),
                transaction_id,
            )
            try:
                await self._connection.write(frame_bytes)
                frame = await asyncio.wait_for(future, transaction.timeout_s)
            except asyncio.TimeoutError:
                transaction.emit("timeout")
                continue
            except DeviceConnectionError as exc:
                raise ProtocolError(f"Send failed: {exc}") from exc
            except asyncio.CancelledError:
                transaction.emit("cancel")
                raise
            finally:
                self._pending.pop(transaction_id, None)
            return frame.pdu

        raise TransactionTimeoutError(
            f"No response to {transaction.request} after {transaction.attempts} attempt(s)"
        )

    def close(self) -> None:
        """Stop framing and fail every transaction still waiting."""
        if self._eof_handle is not None:
            self._eof_handle.cancel()
            self._eof_handle = None
        self.framer.reset()
        self._fail_pending("Transport closed")

    def _allocate_id(self) -> int:
        self._next_id = (self._next_id + 1) & 0xFFFF
        return self._next_id

    def _on_data(self, data: bytes) -> None:
        try:
            frames = self.framer.feed(data)
        except FramingError as exc:
            self.emit("error", exc)
            frames = []
        for frame in frames:
            self._deliver(frame)

        if self.framer.eof_timeout_s is not None:
            if self._eof_handle is not None:
                self._eof_handle.cancel()
            loop = asyncio.get_running_loop()
            self._eof_handle = loop.call_later(self.framer.eof_timeout_s, self._on_silence)

    def _on_silence(self) -> None:
        self._eof_handle = None
        try:
            frames = self.framer.flush()
        except FramingError as exc:
            self.emit("error", exc)
            return
        for frame in frames:
            self._deliver(frame)

    def _deliver(self, frame: Frame) -> None:
        if self.framer.matches_transaction_id:
            entry = self._pending.get(frame.transaction_id)
        else:
            entry = next(iter(self._pending.values()), None)
        if entry is None:
            LOGGER.debug("Dropping unsolicited frame from unit %s: %s", frame.unit, frame.pdu.hex(" "))
            return

        transaction, future = entry
        if frame.unit != transaction.unit:
            LOGGER.debug("Dropping frame from unit %s while waiting on unit %s", frame.unit, transaction.unit)
            return
        if not future.done():
            future.set_result(frame)

    def _on_close(self) -> None:
        self._fail_pending("Connection closed")

    def _fail_pending(self, reason: str) -> None:
        for transaction, future in list(self._pending.values()):
            if not future.done():
                transaction.emit("cancel")
                future.set_exception(ProtocolError(reason))
