"""Shared data types for provisioning sessions."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Generic, TypeVar

T = TypeVar("T")


# ── Known / Pending ───────────────────────────────────────────────


class Pending:
    """Marker for a value the provider has not reported yet."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self):
        return "PENDING"

    def __bool__(self):
        return False


PENDING = Pending()


@dataclass(frozen=True)
class Known(Generic[T]):
    """A value the provider has reported. May legitimately be empty."""

    value: T

    def __bool__(self):
        return True


def known_or_pending(value):
    """Wrap an optional provider value: ``None`` means not reported yet."""
    return PENDING if value is None else Known(value)


# ── Status enums ──────────────────────────────────────────────────


class ProviderStatus(str, Enum):
    NEW = "new"
    ACTIVE = "active"
    RUNNING = "running"
    ERROR = "error"

    @classmethod
    def from_reported(cls, text) -> "ProviderStatus":
        """Map a provider's free-text status onto the closed vocabulary.

        Anything outside it (``initializing``, ``starting``, ``off``...) is
        still "new" from the orchestrator's point of view.
        """
        value = (text or "").strip().lower()
        try:
            return cls(value)
        except ValueError:
            return cls.NEW

    @property
    def is_ready(self) -> bool:
        return self in (ProviderStatus.ACTIVE, ProviderStatus.RUNNING)


class CloudInitStatus(str, Enum):
    WAITING = "waiting"
    CHECKING = "checking"
    RUNNING = "running"
    DONE = "done"
    ERROR = "error"
    TIMEOUT = "timeout"


class ProxyInstallStatus(str, Enum):
    WAITING = "waiting"
    RUNNING = "running"
    DONE = "done"
    ERROR = "error"
    SKIPPED = "skipped"


class ProvisioningPhase(str, Enum):
    IDLE = "idle"
    CREATING = "creating"
    POLLING = "polling"
    CHECKING_CLOUD_INIT = "checking_cloud_init"
    INSTALLING_PROXY = "installing_proxy"
    PROXY_INSTALL_ERROR = "proxy_install_error"
    SUCCESS = "success"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (ProvisioningPhase.SUCCESS, ProvisioningPhase.FAILED)


@dataclass
class ProvisioningStatus:
    """Progress flags for the tracked phases. Pure data, no behavior."""

    provider_status: ProviderStatus = ProviderStatus.NEW
    cloud_init_status: CloudInitStatus = CloudInitStatus.WAITING
    cloud_init_check_attempts: int = 0
    ssh_accessible: bool = False
    proxy_install_status: ProxyInstallStatus = ProxyInstallStatus.WAITING
    last_checked: datetime | None = None
    provider_poll_attempts: int = 0


# ── Inputs ────────────────────────────────────────────────────────


@dataclass
class LocalSSHKey:
    """A key pair known on this machine."""

    name: str
    public_key: str
    private_key_path: str | None = None

    @property
    def normalized_public_key(self) -> str:
        return self.public_key.strip()


@dataclass
class SSHCredentials:
    """How to log in to a provisioned host."""

    username: str
    private_key_path: str | None = None
    port: int = 22


@dataclass
class ServerSpec:
    """What to order from the provider."""

    name: str
    region: str
    size: str
    image: str
    ssh_keys: list[LocalSSHKey] = field(default_factory=list)
    username: str = "codeagent"
    first_boot_script: str | None = None

    @property
    def credential_key(self) -> LocalSSHKey | None:
        """The key used to reach the host: the first selected one with a private half."""
        for key in self.ssh_keys:
            if key.private_key_path:
                return key
        return self.ssh_keys[0] if self.ssh_keys else None


# ── Provider-side records ─────────────────────────────────────────


@dataclass
class CloudServer:
    """A VM as reported by a provider."""

    id: str
    name: str
    status: str
    public_address: str | None = None
    region: str = ""


@dataclass
class CloudSSHKey:
    """A key registered with a provider."""

    id: str
    name: str
    public_key: str
    fingerprint: str = ""


# ── Host candidate ────────────────────────────────────────────────


@dataclass
class HostRecord:
    """In-memory candidate for a newly active VM.

    Never persisted by the orchestrator. Everything needed to reconnect is
    held here so the caller can save it even after abandoning the session.
    """

    name: str
    public_address: str
    provider_server_id: str
    credential_ref: str | None = None
    username: str = "codeagent"
    port: int = 22
    projects_path: str = "/home/codeagent/projects"
    cloud_init_complete: bool = False

    @property
    def address(self) -> str:
        """SSH address string (user@host)."""
        return f"{self.username}@{self.public_address}" if self.username else self.public_address

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "public_address": self.public_address,
            "provider_server_id": self.provider_server_id,
            "credential_ref": self.credential_ref,
            "username": self.username,
            "port": self.port,
            "projects_path": self.projects_path,
            "cloud_init_complete": self.cloud_init_complete,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "HostRecord":
        missing = [k for k in ("name", "public_address", "provider_server_id") if not data.get(k)]
        if missing:
            raise ValueError(f"Host record is missing required field(s): {', '.join(missing)}")
        return cls(
            name=data["name"],
            public_address=data["public_address"],
            provider_server_id=str(data["provider_server_id"]),
            credential_ref=data.get("credential_ref"),
            username=data.get("username", "codeagent"),
            port=int(data.get("port", 22)),
            projects_path=data.get("projects_path", "/home/codeagent/projects"),
            cloud_init_complete=bool(data.get("cloud_init_complete", False)),
        )
