"""Domain-specific errors for mbcli."""


class MbcliError(Exception):
    """Base error for mbcli."""


class ConfigError(MbcliError):
    """Raised when the effective configuration cannot be used."""


class DefaultsFileError(ConfigError):
    """Raised when the persisted defaults file cannot be read or parsed."""


class ArgumentError(MbcliError):
    """Raised when a command argument is missing, unparsable or out of range."""


class UsageError(MbcliError):
    """Raised for an unknown action or type."""


class DeviceConnectionError(MbcliError):
    """Raised when a connection cannot be discovered or opened."""


class ProtocolError(MbcliError):
    """Raised when a MODBUS transaction fails."""


class TransactionTimeoutError(ProtocolError):
    """Raised when no response arrives within the configured timeout."""


class ExceptionResponseError(ProtocolError):
    """Raised when the slave answers with a MODBUS exception response."""

    def __init__(self, function_code: int, exception_code: int) -> None:
        super().__init__(
            f"Exception response to function 0x{function_code:02X}: "
            f"{_EXCEPTION_NAMES.get(exception_code, 'unknown exception')} "
            f"(code {exception_code})"
        )
        self.function_code = function_code
        self.exception_code = exception_code


class FramingError(ProtocolError):
    """Raised when received bytes do not form a valid frame."""


_EXCEPTION_NAMES = {
    0x01: "illegal function",
    0x02: "illegal data address",
    0x03: "illegal data value",
    0x04: "slave device failure",
    0x05: "acknowledge",
    0x06: "slave device busy",
    0x08: "memory parity error",
    0x0A: "gateway path unavailable",
    0x0B: "gateway target device failed to respond",
}
