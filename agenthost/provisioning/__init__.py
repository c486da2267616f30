"""Host provisioning: orchestration, cloud-init checks, proxy install, providers."""

from agenthost.provisioning.capabilities import (
    InvalidTransitionError,
    ProviderError,
    ProvisioningError,
    ProxyInstallError,
    RemoteShellError,
)
from agenthost.provisioning.cloud_config import generate_cloud_config
from agenthost.provisioning.cloud_init import (
    CloudInitChecker,
    CloudInitOutcome,
    parse_cloud_init_status,
    watch_cloud_init,
)
from agenthost.provisioning.orchestrator import (
    Orchestrator,
    ProvisioningOutcome,
    ProvisioningSession,
    TimingSettings,
)
from agenthost.provisioning.providers import make_provider, resolve_api_token
from agenthost.provisioning.proxy_install import ProxyInstallSupervisor
from agenthost.provisioning.ssh_keys import reconcile_ssh_keys
from agenthost.provisioning.status import CancelToken, StatusBoard, StatusSnapshot
from agenthost.provisioning.types import (
    CloudInitStatus,
    HostRecord,
    LocalSSHKey,
    ProviderStatus,
    ProvisioningPhase,
    ProvisioningStatus,
    ProxyInstallStatus,
    ServerSpec,
    SSHCredentials,
)

__all__ = [
    "ProvisioningError",
    "ProviderError",
    "RemoteShellError",
    "ProxyInstallError",
    "InvalidTransitionError",
    "generate_cloud_config",
    "CloudInitChecker",
    "CloudInitOutcome",
    "parse_cloud_init_status",
    "watch_cloud_init",
    "Orchestrator",
    "ProvisioningOutcome",
    "ProvisioningSession",
    "TimingSettings",
    "make_provider",
    "resolve_api_token",
    "ProxyInstallSupervisor",
    "reconcile_ssh_keys",
    "CancelToken",
    "StatusBoard",
    "StatusSnapshot",
    "CloudInitStatus",
    "HostRecord",
    "LocalSSHKey",
    "ProviderStatus",
    "ProvisioningPhase",
    "ProvisioningStatus",
    "ProxyInstallStatus",
    "ServerSpec",
    "SSHCredentials",
]
