"""Typer CLI entrypoint."""

from __future__ import annotations

import asyncio
import os
from pathlib import Path

import typer
import yaml

from mbcli.core import exit_codes
from mbcli.core.config import (
    CliOverrides,
    default_config_path,
    load_persisted,
    resolve_config,
    save_config,
    validate_config,
)
from mbcli.core.dispatch import parse_action
from mbcli.core.errors import MbcliError, UsageError
from mbcli.core.lifecycle import MasterLifecycle
from mbcli.core.model import ConnectionKind, EffectiveConfig, PortInfo
from mbcli.core.output import OutputController
from mbcli.core.taps import configure_logging
from mbcli.transports import factory

EPILOG = """\b
Read types:
    coil [start] [quantity]        discrete [start] [quantity]
    holding [start] [quantity]     input [start] [quantity]
    slave                          fifo [id] [max]
    object [id]                    memory [address] [length]

\b
Write types:
    coil [address] [0|1]           holding [address] [word] [word]...
    fifo [id] [value]              object [id] [byte]...
    memory [address] [byte]...

\b
Other actions:
    command [id] [byte]...         generic [function] [byte]...

\b
Numbers are decimal or 0x-prefixed hex. A byte or word VALUE:COUNT
repeats VALUE COUNT times (0x41:3 is 0x41 0x41 0x41).

\b
Examples:
    mb --port=/dev/ttyUSB0 read holding 0 3
    mb --port=/dev/ttyUSB0 --out=csv --loop read input 0x10 4
    mb write memory 0x400 0x55 0xAA
    mb --connection=can --port=can0 --canid=0xFE read slave
    mb --port=AA:BB:CC:DD:EE:FF read object 3
"""

app = typer.Typer(
    help="Read, write and command MODBUS devices over serial, websocket, BLE or CAN.",
    add_completion=False,
    rich_markup_mode=None,
    context_settings={"help_option_names": ["-h", "--help"]},
)


def _describe(port: PortInfo) -> str:
    fields = [port.name, port.description, port.manufacturer]
    while len(fields) > 1 and not fields[-1]:
        fields.pop()
    return " : ".join(fields)


def _list_ports(config: EffectiveConfig) -> int:
    if config.connection is ConnectionKind.BLE:
        typer.echo("Scanning for peripherals (CTRL-C to stop)")
    try:
        asyncio.run(factory.enumerate_ports(config, lambda port: typer.echo(_describe(port))))
    except KeyboardInterrupt:
        pass
    return exit_codes.SUCCESS


def _run(
    tokens: list[str],
    overrides: CliOverrides,
    *,
    list_ports: bool,
    verbose: bool,
    save: bool,
    show: bool,
    use_builtins: bool,
    loop: bool,
    out: str | None,
    log: Path | None,
) -> int:
    config_path = default_config_path()
    persisted = None if use_builtins else load_persisted(config_path)
    config = resolve_config(overrides, os.environ, persisted, list_mode=list_ports)

    if save:
        save_config(config, config_path)
    if list_ports:
        configure_logging(verbose=verbose, structured_output=False, log_file=log)
        return _list_ports(config)
    if show:
        typer.echo(yaml.safe_dump(config.to_document(), sort_keys=False).rstrip())
        return exit_codes.SUCCESS

    if not tokens:
        raise UsageError("No action given. Run 'mb -h' for usage.")
    parse_action(tokens[0])
    if out is not None and out != "csv":
        raise UsageError(f"Unknown output format '{out}'. Only 'csv' is supported.")

    configure_logging(verbose=verbose, structured_output=out is not None, log_file=log)
    validate_config(config)

    output = OutputController(csv=out == "csv", loop=loop)
    return asyncio.run(MasterLifecycle(config, tokens, output).run())


@app.command(epilog=EPILOG)
def main(
    tokens: list[str] | None = typer.Argument(
        None,
        metavar="ACTION [TYPE] [ARGS]...",
        help="read, write, command or generic, followed by its type and arguments.",
    ),
    connection: str | None = typer.Option(
        None, "--connection", help="serial, websocket, ble, can-usb-com or can. [env: MODBUS_CONNECTION]"
    ),
    baudrate: str | None = typer.Option(None, "--baudrate", "--baud", help="Serial baud rate. [env: MODBUS_BAUDRATE]"),
    port: str | None = typer.Option(
        None, "--port", help="Device path, CAN channel or BLE address. [env: MODBUS_PORT]"
    ),
    transport: str | None = typer.Option(
        None, "--transport", help="rtu, ascii, ip, j1939 or socketcand. [env: MODBUS_TRANSPORT]"
    ),
    unit: str | None = typer.Option(None, "--unit", "--slave", help="Slave unit id. [env: MODBUS_SLAVE]"),
    canrate: str | None = typer.Option(None, "--canrate", help="CAN bus bit rate. [env: MODBUS_CANRATE]"),
    canid: str | None = typer.Option(None, "--canid", help="Our J1939 node address. [env: MODBUS_CANID]"),
    list_ports: bool = typer.Option(False, "-l", "--list", help="List available connections and exit."),
    verbose: bool = typer.Option(False, "-v", "--verbose", help="Log connection traffic."),
    save: bool = typer.Option(False, "--save", help="Save the effective configuration as the new defaults."),
    show: bool = typer.Option(False, "--show", help="Print the effective configuration and exit."),
    use_builtins: bool = typer.Option(False, "--default", help="Ignore saved defaults."),
    loop: bool = typer.Option(False, "--loop", help="Repeat the command until it fails or Ctrl-C."),
    out: str | None = typer.Option(None, "--out", help="Structured output format (csv)."),
    log: Path | None = typer.Option(None, "--log", help="Mirror diagnostic logs to this file."),
) -> None:
    """Issue one MODBUS operation against the configured device."""
    overrides = CliOverrides(
        connection=connection,
        transport=transport,
        port=port,
        baud_rate=baudrate,
        unit=unit,
        can_rate=canrate,
        can_id=canid,
    )
    try:
        code = _run(
            tokens or [],
            overrides,
            list_ports=list_ports,
            verbose=verbose,
            save=save,
            show=show,
            use_builtins=use_builtins,
            loop=loop,
            out=out,
            log=log,
        )
    except MbcliError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=exit_codes.FAILURE) from None
    except KeyboardInterrupt:
        raise typer.Exit(code=exit_codes.KEYBOARD_INTERRUPT) from None
    if code != exit_codes.SUCCESS:
        raise typer.Exit(code=code)


def run() -> None:
    app()


if __name__ == "__main__":
    run()
