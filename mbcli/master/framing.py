"""Framings that carry a MODBUS PDU over a byte connection."""

from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import Protocol

from mbcli.core.errors import FramingError


@dataclass(frozen=True)
class Frame:
    unit: int
    pdu: bytes
    transaction_id: int = 0


class Framer(Protocol):
    name: str
    # True when responses carry the transaction id of their request.
    matches_transaction_id: bool
    # Seconds of line silence that end a frame, or None for delimited framings.
    eof_timeout_s: float | None

    def encode(self, unit: int, pdu: bytes, transaction_id: int = 0) -> bytes:
        """Wrap *pdu* for transmission."""

    def feed(self, data: bytes) -> list[Frame]:
        """Accept received bytes and return every frame they complete."""

    def flush(self) -> list[Frame]:
        """Close the pending frame after line silence."""

    def reset(self) -> None:
        """Drop any partially received frame."""


def crc16(data: bytes) -> int:
    crc = 0xFFFF
    for b in data:
        crc ^= b
        for _ in range(8):
            crc = (crc >> 1) ^ 0xA001 if (crc & 1) else (crc >> 1)
    return crc & 0xFFFF


def lrc(data: bytes) -> int:
    return (-sum(data)) & 0xFF


class RtuFramer:
    name = "rtu"
    matches_transaction_id = False

    def __init__(self, eof_timeout_s: float = 0.04) -> None:
        self.eof_timeout_s = eof_timeout_s
        self._buffer = bytearray()

    def encode(self, unit: int, pdu: bytes, transaction_id: int = 0) -> bytes:
        body = bytes([unit]) + pdu
        return body + crc16(body).to_bytes(2, "little")

    def feed(self, data: bytes) -> list[Frame]:
        self._buffer += data
        return []

    def flush(self) -> list[Frame]:
        raw = bytes(self._buffer)
        self._buffer.clear()
        if not raw:
            return []
        if len(raw) < 4:
            raise FramingError(f"RTU frame too short: {raw.hex(' ')}")
        if crc16(raw[:-2]) != int.from_bytes(raw[-2:], "little"):
            raise FramingError(f"RTU CRC mismatch: {raw.hex(' ')}")
        return [Frame(raw[0], raw[1:-2])]

    def reset(self) -> None:
        self._buffer.clear()


class AsciiFramer:
    name = "ascii"
    matches_transaction_id = False
    eof_timeout_s = None

    def __init__(self) -> None:
        self._buffer = bytearray()

    def encode(self, unit: int, pdu: bytes, transaction_id: int = 0) -> bytes:
        body = bytes([unit]) + pdu
        payload = (body + bytes([lrc(body)])).hex().upper()
        return b":" + payload.encode("ascii") + b"\r\n"

    def feed(self, data: bytes) -> list[Frame]:
        self._buffer += data
        frames: list[Frame] = []
        while True:
            start = self._buffer.find(b":")
            if start < 0:
                self._buffer.clear()
                return frames
            end = self._buffer.find(b"\r\n", start)
            if end < 0:
                del self._buffer[:start]
                return frames
            text = bytes(self._buffer[start + 1 : end])
            del self._buffer[: end + 2]
            frames.append(self._decode(text))

    def _decode(self, text: bytes) -> Frame:
        try:
            raw = bytes.fromhex(text.decode("ascii"))
        except ValueError as exc:
            raise FramingError(f"ASCII frame is not hex: {text!r}") from exc
        if len(raw) < 3:
            raise FramingError(f"ASCII frame too short: {text!r}")
        if lrc(raw[:-1]) != raw[-1]:
            raise FramingError(f"ASCII LRC mismatch: {text!r}")
        return Frame(raw[0], raw[1:-1])

    def flush(self) -> list[Frame]:
        return []

    def reset(self) -> None:
        self._buffer.clear()


class IpFramer:
    """MODBUS application header (MBAP) framing."""

    name = "ip"
    matches_transaction_id = True
    eof_timeout_s = None

    _HEADER = struct.Struct(">HHHB")

    def __init__(self) -> None:
        self._buffer = bytearray()

    def encode(self, unit: int, pdu: bytes, transaction_id: int = 0) -> bytes:
        return self._HEADER.pack(transaction_id, 0, len(pdu) + 1, unit) + pdu

    def feed(self, data: bytes) -> list[Frame]:
        self._buffer += data
        frames: list[Frame] = []
        while len(self._buffer) >= self._HEADER.size:
            transaction_id, protocol_id, length, unit = self._HEADER.unpack_from(self._buffer)
            if protocol_id != 0 or length < 2:
                self._buffer.clear()
                raise FramingError(f"Invalid MBAP header: protocol {protocol_id}, length {length}")
            total = 6 + length
            if len(self._buffer) < total:
                break
            pdu = bytes(self._buffer[self._HEADER.size : total])
            del self._buffer[:total]
            frames.append(Frame(unit, pdu, transaction_id))
        return frames

    def flush(self) -> list[Frame]:
        return []

    def reset(self) -> None:
        self._buffer.clear()


class J1939Framer:
    """PDUs travel as whole CAN messages; the first byte is the node address."""

    name = "j1939"
    matches_transaction_id = False
    eof_timeout_s = None

    def encode(self, unit: int, pdu: bytes, transaction_id: int = 0) -> bytes:
        return bytes([unit]) + pdu

    def feed(self, data: bytes) -> list[Frame]:
        if len(data) < 2:
            raise FramingError(f"J1939 message too short: {data.hex(' ')}")
        return [Frame(data[0], bytes(data[1:]))]

    def flush(self) -> list[Frame]:
        return []

    def reset(self) -> None:
        pass
