"""Error taxonomy for hermit-launcher.

Per-descriptor validation problems are *not* exceptions: they are logged as
warnings and the offending entry is dropped.
"""


class HermitError(Exception):
    """Base class for every fatal launcher error."""


class ConfigurationError(HermitError):
    """The model list is empty, unusable, or the config file is missing."""


class ProviderNotFound(HermitError, KeyError):
    """A provider identifier has no template in the registry."""

    def __init__(self, provider: str) -> None:
        super().__init__(provider)
        self.provider = provider

    def __str__(self) -> str:
        return f"Unknown provider '{self.provider}'"


class DependencyTimeout(HermitError):
    """A dependency did not become ready within its timeout."""

    def __init__(self, name: str, timeout: float) -> None:
        super().__init__(f"{name} did not become ready within {timeout:g} seconds")
        self.name = name
        self.timeout = timeout


class ServiceControlError(HermitError):
    """A shared-service control command (up/down/logs) failed."""

    def __init__(self, command: list[str], returncode: int | None, detail: str = "") -> None:
        msg = f"`{' '.join(command)}` failed"
        if returncode is not None:
            msg += f" with exit status {returncode}"
        if detail:
            msg += f": {detail}"
        super().__init__(msg)
        self.command = command
        self.returncode = returncode
        self.detail = detail


class Interrupted(HermitError):
    """A termination signal arrived before the client was launched."""
