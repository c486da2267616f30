"""Provisioning configuration: YAML file plus command-line overrides."""

import dataclasses
import logging
import os
from dataclasses import dataclass, field

import yaml

from agenthost.provisioning.installer import DEFAULT_INSTALL_SCRIPT_URL
from agenthost.provisioning.orchestrator import TimingSettings

logger = logging.getLogger(__name__)

DEFAULT_SSH_KEY = "~/.ssh/id_ed25519"


@dataclass
class InstallConfig:
    enabled: bool = True
    script_url: str = DEFAULT_INSTALL_SCRIPT_URL
    retries: int = 0
    skip_on_failure: bool = False


@dataclass
class ProvisionConfig:
    """Everything needed to provision one host."""

    provider: str | None = None
    api_url: str | None = None
    name: str | None = None
    region: str | None = None
    size: str | None = None
    image: str | None = None
    username: str = "codeagent"
    ssh_keys: list[str] = field(default_factory=list)
    install: InstallConfig = field(default_factory=InstallConfig)
    timings: TimingSettings = field(default_factory=TimingSettings)

    def with_overrides(self, **overrides) -> "ProvisionConfig":
        """Return a copy with every non-None override applied."""
        changes = {k: v for k, v in overrides.items() if v is not None and v != []}
        return dataclasses.replace(self, **changes)

    def validate(self):
        """Raise ValueError naming every missing required field."""
        missing = [name for name in ("provider", "name", "region", "size", "image") if not getattr(self, name)]
        if missing:
            raise ValueError(f"Missing required setting(s): {', '.join(missing)}")
        if self.install.retries < 0:
            raise ValueError("install.retries must be >= 0")


def _expand_path(path: str) -> str:
    """Expand user home directory and environment variables in path."""
    return os.path.expanduser(os.path.expandvars(path))


def _build_section(cls, data, section):
    if data is None:
        return cls()
    if not isinstance(data, dict):
        raise ValueError(f"'{section}' must be a mapping")
    known = {f.name for f in dataclasses.fields(cls)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ValueError(f"Unknown key(s) in '{section}': {', '.join(unknown)}")
    return cls(**data)


def parse_config(raw: dict) -> ProvisionConfig:
    """Build a ProvisionConfig from an already-parsed YAML mapping."""
    if raw is None:
        return ProvisionConfig()
    if not isinstance(raw, dict):
        raise ValueError("Config must be a YAML mapping")

    server = raw.get("server") or {}
    ssh_keys = raw.get("ssh_keys") or []
    if isinstance(ssh_keys, str):
        ssh_keys = [ssh_keys]

    return ProvisionConfig(
        provider=raw.get("provider"),
        api_url=raw.get("api_url"),
        name=server.get("name"),
        region=server.get("region"),
        size=server.get("size"),
        image=server.get("image"),
        username=raw.get("username", "codeagent"),
        ssh_keys=[_expand_path(k) for k in ssh_keys],
        install=_build_section(InstallConfig, raw.get("install"), "install"),
        timings=_build_section(TimingSettings, raw.get("timings"), "timings"),
    )


def load_config(config_path: str) -> ProvisionConfig:
    """Load provisioning settings from a YAML file.

    Raises:
        ValueError: if the file is missing, not valid YAML, or malformed.
    """
    try:
        with open(_expand_path(config_path)) as f:
            raw = yaml.safe_load(f)
    except FileNotFoundError as e:
        raise ValueError(f"Config file '{config_path}' not found.") from e
    except yaml.YAMLError as e:
        raise ValueError(f"Error parsing YAML config: {e}") from e
    logger.debug(f"Loaded config from {config_path}")
    return parse_config(raw)
