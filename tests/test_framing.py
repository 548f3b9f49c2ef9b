from __future__ import annotations

import pytest

from mbcli.core.errors import FramingError
from mbcli.master import pdu
from mbcli.master.framing import AsciiFramer, Frame, IpFramer, J1939Framer, RtuFramer, crc16, lrc


def test_crc16_matches_reference_frame() -> None:
    assert crc16(bytes.fromhex("010300000001")) == 0x0A84


def test_rtu_encode_appends_crc_little_endian() -> None:
    framer = RtuFramer()
    assert framer.encode(1, bytes.fromhex("0300000001")) == bytes.fromhex("010300000001840a")


def test_rtu_frame_completes_on_flush() -> None:
    framer = RtuFramer()
    raw = framer.encode(7, bytes.fromhex("0302002a"))
    assert framer.feed(raw[:3]) == []
    assert framer.feed(raw[3:]) == []
    assert framer.flush() == [Frame(7, bytes.fromhex("0302002a"))]
    assert framer.flush() == []


def test_rtu_bad_crc_raises() -> None:
    framer = RtuFramer()
    framer.feed(bytes.fromhex("0103020001ffff"))
    with pytest.raises(FramingError, match="CRC"):
        framer.flush()


def test_ascii_encode_uses_lrc_and_crlf() -> None:
    assert lrc(bytes.fromhex("010300000001")) == 0xFB
    assert AsciiFramer().encode(1, bytes.fromhex("0300000001")) == b":010300000001FB\r\n"


def test_ascii_frame_split_across_chunks() -> None:
    framer = AsciiFramer()
    assert framer.feed(b"noise:0103") == []
    assert framer.feed(b"00000001FB\r\n") == [Frame(1, bytes.fromhex("0300000001"))]


def test_ascii_bad_lrc_raises() -> None:
    with pytest.raises(FramingError, match="LRC"):
        AsciiFramer().feed(b":01030000000100\r\n")


def test_ip_framer_round_trip_keeps_transaction_id() -> None:
    framer = IpFramer()
    raw = framer.encode(5, bytes.fromhex("0300000002"), transaction_id=0x1234)
    assert raw[:7] == bytes.fromhex("12340000000605")

    assert framer.feed(raw[:4]) == []
    assert framer.feed(raw[4:]) == [Frame(5, bytes.fromhex("0300000002"), 0x1234)]


def test_ip_framer_rejects_foreign_protocol() -> None:
    with pytest.raises(FramingError, match="MBAP"):
        IpFramer().feed(bytes.fromhex("00010001000301030000"))


def test_j1939_framer_uses_first_byte_as_node() -> None:
    framer = J1939Framer()
    assert framer.encode(0x20, b"\x11") == b"\x20\x11"
    assert framer.feed(b"\x20\x11\x01\x02") == [Frame(0x20, b"\x11\x01\x02")]


def test_decode_bits_trims_padding() -> None:
    request = pdu.read_coils(0, 10)
    response = pdu.decode_response(request, bytes([0x01, 0x02, 0b00000101, 0b00000010]))
    assert response.value == (True, False, True, False, False, False, False, False, False, True)


def test_decode_registers_and_raw_bytes() -> None:
    request = pdu.read_holding_registers(0, 3)
    response = pdu.decode_response(request, bytes.fromhex("0306000100020003"))
    assert response.value == (1, 2, 3)
    assert response.to_bytes() == bytes.fromhex("0306000100020003")


def test_decode_exception_response() -> None:
    response = pdu.decode_response(pdu.read_holding_registers(0, 1), bytes([0x83, 0x02]))
    assert response.is_exception
    assert response.exception_code == 2


def test_decode_rejects_mismatched_function() -> None:
    with pytest.raises(FramingError, match="does not match"):
        pdu.decode_response(pdu.read_holding_registers(0, 1), bytes.fromhex("040200ff"))


def test_decode_rejects_short_payload() -> None:
    with pytest.raises(FramingError, match="Malformed"):
        pdu.decode_response(pdu.read_holding_registers(0, 2), bytes.fromhex("030400ff"))


def test_memory_request_carries_page_and_offset() -> None:
    request = pdu.write_memory(0x10400, b"\x55\xaa")
    assert request.to_bytes() == bytes.fromhex("46000104000255aa")


def test_write_registers_request_layout() -> None:
    request = pdu.write_multiple_registers(0x10, [256, 32])
    assert request.to_bytes() == bytes.fromhex("10001000020401000020")


def test_vendor_responses() -> None:
    fifo = pdu.decode_response(pdu.read_fifo8(1, 4), bytes.fromhex("41000203aa"))
    assert fifo.value == b"\x03\xaa"
    status = pdu.decode_response(pdu.write_object(2, b"\x01"), bytes.fromhex("4400"))
    assert status.value == 0
    command = pdu.decode_response(pdu.command(9, b""), bytes.fromhex("4709beef"))
    assert command.value == b"\xbe\xef"
