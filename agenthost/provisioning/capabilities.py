"""Contracts for the services the orchestrator drives, and their errors.

The orchestrator only ever talks to these interfaces; concrete providers,
the ssh transport and the script installer are injected by the caller.
"""

from typing import Callable, Protocol

from agenthost.provisioning.types import CloudServer, CloudSSHKey, HostRecord, SSHCredentials


class ProvisioningError(Exception):
    """Base class for provisioning failures."""


class ProviderError(ProvisioningError):
    """A cloud provider call failed.

    ``transient`` marks failures that are safe to retry (network errors,
    rate limiting); everything else means the request was rejected.
    """

    def __init__(self, message, status_code=None, transient=False):
        super().__init__(message)
        self.status_code = status_code
        self.transient = transient


class RemoteShellError(ProvisioningError):
    """The host could not be reached or the session dropped."""


class ProxyInstallError(ProvisioningError):
    """The agent install finished unsuccessfully."""


class InvalidTransitionError(ProvisioningError):
    """A control (retry, skip) was used in a state that does not allow it."""


class CloudProvider(Protocol):
    async def create_server(
        self, name: str, region: str, size: str, image: str, ssh_key_ids: list[str], user_data: str | None
    ) -> CloudServer: ...

    async def get_server(self, server_id: str) -> CloudServer | None: ...

    async def list_ssh_keys(self) -> list[CloudSSHKey]: ...

    async def add_ssh_key(self, name: str, public_key: str) -> CloudSSHKey: ...


class ShellSession(Protocol):
    async def execute(self, command: str) -> str: ...

    async def close(self) -> None: ...


class RemoteShell(Protocol):
    async def connect(self, address: str, credentials: SSHCredentials) -> ShellSession: ...


LogLineCallback = Callable[[str], None]


class ProxyInstaller(Protocol):
    async def install(self, host: HostRecord, credentials: SSHCredentials, on_log_line: LogLineCallback) -> None:
        """Install the agent, raising ProxyInstallError on failure."""
        ...
