"""Numeric argument parsing for command tokens and configuration values.

Numbers are decimal unless prefixed with ``0x``. Byte and word sequences
accept ``value:count`` runs, so ``0x41:3`` expands to three ``0x41`` bytes.
"""

from __future__ import annotations

import re
from collections.abc import Sequence

from mbcli.core.errors import ArgumentError

_DECIMAL_RE = re.compile(r"^[+-]?[0-9]+$")
_HEX_RE = re.compile(r"^0[xX][0-9a-fA-F]+$")

BYTE_MAX = 0xFF
WORD_MAX = 0xFFFF
RUN_COUNT_MAX = 0xFFFF


def parse_number(token: str | int | None, default: int) -> int:
    """Parse a decimal or ``0x`` hexadecimal literal.

    Returns *default* only when *token* was not supplied at all; an explicit
    ``"0"`` parses to zero. Anything that is not a number raises
    :class:`ArgumentError`.
    """
    if token is None:
        return default
    if isinstance(token, int):
        return token
    text = token.strip()
    if _HEX_RE.match(text):
        return int(text[2:], 16)
    if _DECIMAL_RE.match(text):
        return int(text, 10)
    raise ArgumentError(f"Invalid number: '{token}'")


def parse_bounded(
    token: str | None,
    default: int,
    *,
    low: int,
    high: int,
    what: str,
) -> int:
    value = parse_number(token, default)
    if value < low or value > high:
        raise ArgumentError(f"Invalid {what}: {token} (expected {low}..{high})")
    return value


def _expand(tokens: Sequence[str], *, maximum: int) -> list[int]:
    values: list[int] = []
    for token in tokens:
        if ":" in token:
            value_text, _, count_text = token.partition(":")
            try:
                value = parse_number(value_text, 0)
                count = parse_number(count_text, 0)
            except ArgumentError:
                raise ArgumentError(f"Invalid data run: '{token}'") from None
            if not 0 <= value <= maximum or not 1 <= count <= RUN_COUNT_MAX:
                raise ArgumentError(
                    f"Invalid data run: '{token}' "
                    f"(value 0..{maximum}, count 1..{RUN_COUNT_MAX})"
                )
            values.extend([value] * count)
            continue

        try:
            value = parse_number(token, 0)
        except ArgumentError:
            raise ArgumentError(f"Invalid data value: '{token}'") from None
        if not 0 <= value <= maximum:
            raise ArgumentError(f"Invalid data value: '{token}' (expected 0..{maximum})")
        values.append(value)
    return values


def parse_byte_sequence(tokens: Sequence[str]) -> bytes:
    """Convert tokens into bytes, expanding ``value:count`` runs."""
    return bytes(_expand(tokens, maximum=BYTE_MAX))


def parse_word_sequence(tokens: Sequence[str]) -> tuple[int, ...]:
    """Convert tokens into 16-bit words, expanding ``value:count`` runs."""
    return tuple(_expand(tokens, maximum=WORD_MAX))
