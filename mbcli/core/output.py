"""Result rendering and the loop/exit decision."""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import Any

import typer

from mbcli.core import exit_codes
from mbcli.master.pdu import Response


class OutputController:
    def __init__(
        self,
        *,
        csv: bool = False,
        loop: bool = False,
        echo: Callable[..., Any] = typer.echo,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.csv = csv
        self.loop = loop
        self._echo = echo
        self._clock = clock
        self._start: float | None = None

    def mark_start(self) -> None:
        """Record the moment the master connected."""
        self._start = self._clock()

    def elapsed_ms(self) -> int:
        if self._start is None:
            return 0
        return int((self._clock() - self._start) * 1000)

    def connection_error(self, error: Exception) -> None:
        """Report a link failure on stderr whatever the log routing."""
        self._echo(f"Error: {error}", err=True)

    def handle(self, error: Exception | None, response: Response | None) -> int | None:
        """Return the exit code, or ``None`` to dispatch again."""
        if error is not None:
            self._echo(f"Error: {error}", err=True)
            return exit_codes.FAILURE

        if self.csv and response is not None:
            fields = [str(self.elapsed_ms()), *(str(b) for b in response.to_bytes())]
            self._echo(",".join(fields))

        if self.loop:
            return None
        return exit_codes.SUCCESS
