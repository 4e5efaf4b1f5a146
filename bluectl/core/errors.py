"""Domain-specific errors for bluectl."""


class BluectlError(Exception):
    """Base error for bluectl."""


class ConfigError(BluectlError):
    """Raised when the configuration file does not conform to schema or semantics."""


class TransportError(BluectlError):
    """Base transport error."""


class TransportUnavailableError(TransportError):
    """Raised when the Bluetooth daemon cannot be reached."""


class BusError(TransportError):
    """Raised when the daemon answers a request with an error reply."""

    def __init__(self, name: str | None, message: str | None = None) -> None:
        self.name = name or "org.freedesktop.DBus.Error.Failed"
        self.message = message or ""
        super().__init__(f"{self.name}: {self.message}" if self.message else self.name)


class AdapterNotFoundError(BluectlError):
    """Raised when the adapter selector matches no local adapter."""


class AlreadyRunningError(BluectlError):
    """Raised when an inquiry is started while another one is still running."""


class StateChangeFailedError(BluectlError):
    """Raised when the adapter rejects a mode change."""


class BondingError(BluectlError):
    """Raised when a bonding request fails (I/O failure towards the remote device)."""


class MalformedAddressError(BluectlError, ValueError):
    """Raised when a device address string cannot be parsed."""


class NameNotAvailableError(BluectlError):
    """Raised when a remote device did not report its friendly name."""


class OperationInterruptedError(BluectlError):
    """Raised when a blocking wait is interrupted."""


class ServiceRecordError(BluectlError):
    """Raised when a service record cannot be encoded or decoded."""


class ServiceRegistrationError(BluectlError):
    """Raised when a local service record cannot be registered, updated or removed."""


class RegistrationUnavailableError(ServiceRegistrationError):
    """Raised when the service directory session cannot be opened."""
