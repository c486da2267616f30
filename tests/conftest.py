"""Shared pytest fixtures for all test modules."""

import asyncio
import os
import subprocess
import sys

import pytest

from agenthost.provisioning.capabilities import ProviderError, ProxyInstallError, RemoteShellError
from agenthost.provisioning.orchestrator import TimingSettings
from agenthost.provisioning.types import CloudServer, CloudSSHKey, LocalSSHKey, ServerSpec


PROJECT_ROOT = os.path.normpath(os.path.join(os.path.dirname(__file__), ".."))

PUBLIC_KEY = "ssh-ed25519 AAAAC3NzaC1lZDI1NTE5AAAAID37 user@example.com"


@pytest.fixture(scope="session")
def project_root():
    """Absolute path to the project root directory."""
    return PROJECT_ROOT


@pytest.fixture(scope="session")
def run_cli(project_root):
    """Return a callable that invokes the agenthost CLI as a subprocess."""

    def _run(*args, env=None):
        result = subprocess.run(
            [sys.executable, "-m", "agenthost.agenthost", *args],
            capture_output=True,
            text=True,
            cwd=project_root,
            env=env,
        )
        return result.returncode, result.stdout, result.stderr

    return _run


@pytest.fixture
def ssh_key_pair(tmp_path):
    """Write a fake key pair and return the private key path."""
    private_key = tmp_path / "id_test"
    private_key.write_text("not a real private key\n")
    (tmp_path / "id_test.pub").write_text(PUBLIC_KEY + "\n")
    return str(private_key)


# ── Fake capabilities ───────────────────────────────────────────────


def _next_scripted(script):
    """Pop the next scripted item, repeating the last one once exhausted."""
    return script.pop(0) if len(script) > 1 else script[0]


class FakeProvider:
    """In-memory CloudProvider.

    ``poll_results`` scripts successive get_server() results: a CloudServer,
    ``None`` (not found) or an exception to raise. The last entry repeats.
    """

    def __init__(self):
        self.remote_keys = []
        self.poll_results = [self.server("active", "203.0.113.10")]
        self.create_error = None
        self.list_keys_error = None
        self.created = []
        self.added_keys = []
        self.list_keys_calls = 0
        self.get_server_calls = 0

    @staticmethod
    def server(status, address=None, server_id="101", name="agent-1"):
        return CloudServer(id=server_id, name=name, status=status, public_address=address, region="nyc3")

    async def create_server(self, name, region, size, image, ssh_key_ids, user_data):
        if self.create_error:
            raise self.create_error
        self.created.append(
            {
                "name": name,
                "region": region,
                "size": size,
                "image": image,
                "ssh_key_ids": list(ssh_key_ids),
                "user_data": user_data,
            }
        )
        return CloudServer(id="101", name=name, status="new", region=region)

    async def get_server(self, server_id):
        self.get_server_calls += 1
        result = _next_scripted(self.poll_results)
        if isinstance(result, Exception):
            raise result
        return result

    async def list_ssh_keys(self):
        self.list_keys_calls += 1
        if self.list_keys_error:
            raise self.list_keys_error
        return list(self.remote_keys)

    async def add_ssh_key(self, name, public_key):
        key = CloudSSHKey(id=str(900 + len(self.added_keys)), name=name, public_key=public_key)
        self.added_keys.append(key)
        self.remote_keys.append(key)
        return key


class FakeSession:
    def __init__(self, output):
        self.output = output
        self.commands = []
        self.closed = False

    async def execute(self, command):
        self.commands.append(command)
        if isinstance(self.output, Exception):
            raise self.output
        return self.output

    async def close(self):
        self.closed = True


class FakeShell:
    """RemoteShell whose connect() follows ``script``.

    Each entry is either a RemoteShellError (connection refused) or the
    output the session returns for ``cloud-init status``. The last entry
    repeats. Set ``session_error`` to make connected sessions fail instead.
    """

    def __init__(self):
        self.script = ["status: done\n"]
        self.session_error = None
        self.connect_calls = 0
        self.sessions = []

    async def connect(self, address, credentials):
        self.connect_calls += 1
        item = _next_scripted(self.script)
        if isinstance(item, RemoteShellError):
            raise item
        session = FakeSession(self.session_error or item)
        self.sessions.append(session)
        return session


class FakeInstaller:
    """ProxyInstaller that emits ``lines`` and fails its first ``failures`` runs."""

    def __init__(self):
        self.lines = ["Downloading proxy agent", "status=ok"]
        self.failures = 0
        self.error = "status=error step=systemd"
        self.calls = 0
        self.gate = None

    async def install(self, host, credentials, on_log_line):
        self.calls += 1
        for line in self.lines:
            on_log_line(line)
        if self.gate is not None:
            await self.gate.wait()
        if self.calls <= self.failures:
            raise ProxyInstallError(self.error)


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def shell():
    return FakeShell()


@pytest.fixture
def installer():
    return FakeInstaller()


@pytest.fixture
def timings():
    """Zero-delay timings with small attempt budgets."""
    return TimingSettings(
        poll_interval=0,
        max_poll_attempts=5,
        cloud_init_initial_delay=0,
        cloud_init_interval=0,
        max_cloud_init_attempts=5,
    )


@pytest.fixture
def server_spec():
    return ServerSpec(
        name="agent-1",
        region="nyc3",
        size="s-2vcpu-4gb",
        image="ubuntu-24-04-x64",
        ssh_keys=[LocalSSHKey(name="id_ed25519", public_key=PUBLIC_KEY, private_key_path="/keys/id_ed25519")],
    )


@pytest.fixture
def wait_for_phase():
    """Return an awaitable helper that blocks until a session reaches *phase*.

    Returns the matching StatusSnapshot, or None if the stream ended first.
    """

    async def _wait(session, phase, timeout=2):
        async def _watch():
            async for snapshot in session.updates():
                if snapshot.phase == phase:
                    return snapshot
            return None

        return await asyncio.wait_for(_watch(), timeout)

    return _wait


@pytest.fixture
def provider_error():
    """Factory for ProviderError instances."""

    def _make(message="boom", status_code=500, transient=True):
        return ProviderError(message, status_code=status_code, transient=transient)

    return _make
