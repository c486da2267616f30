"""Unit tests for ssh argument building and the subprocess-backed shell."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from agenthost.provisioning.capabilities import RemoteShellError
from agenthost.provisioning.ssh_transport import SSHSession, SSHShell, ssh_address, ssh_base_args
from agenthost.provisioning.types import SSHCredentials


def _proc(returncode, stdout=b"", stderr=b""):
    proc = MagicMock()
    proc.returncode = returncode
    proc.communicate = AsyncMock(return_value=(stdout, stderr))
    proc.wait = AsyncMock(return_value=returncode)
    return proc


# ── ssh_base_args ────────────────────────────────────────────────


def test_ssh_base_args_defaults():
    args = ssh_base_args("codeagent@1.2.3.4", None, 22)
    assert args[0] == "ssh"
    assert "StrictHostKeyChecking=no" in args
    assert "BatchMode=yes" in args
    assert "-i" not in args
    assert "-p" not in args
    assert args[-1] == "codeagent@1.2.3.4"


def test_ssh_base_args_key_port_timeout():
    args = ssh_base_args("codeagent@1.2.3.4", "/keys/id_ed25519", 2222, connect_timeout=5)
    assert args[args.index("-i") + 1] == "/keys/id_ed25519"
    assert args[args.index("-p") + 1] == "2222"
    assert "ConnectTimeout=5" in args


def test_ssh_address():
    assert ssh_address("1.2.3.4", "codeagent") == "codeagent@1.2.3.4"
    assert ssh_address("1.2.3.4", "") == "1.2.3.4"


# ── SSHShell / SSHSession ────────────────────────────────────────


@patch("agenthost.provisioning.ssh_transport.asyncio.create_subprocess_exec", new_callable=AsyncMock)
async def test_connect_probes_host(mock_exec):
    mock_exec.return_value = _proc(0)
    creds = SSHCredentials(username="codeagent", private_key_path="/keys/id", port=22)

    session = await SSHShell(connect_timeout=3).connect("1.2.3.4", creds)

    assert isinstance(session, SSHSession)
    assert session.address == "codeagent@1.2.3.4"
    args = mock_exec.call_args.args
    assert "ConnectTimeout=3" in args
    assert args[-2:] == ("codeagent@1.2.3.4", "true")


@patch("agenthost.provisioning.ssh_transport.asyncio.create_subprocess_exec", new_callable=AsyncMock)
async def test_connect_refused(mock_exec):
    mock_exec.return_value = _proc(255, stderr=b"ssh: connect to host 1.2.3.4 port 22: Connection refused")
    with pytest.raises(RemoteShellError, match="Connection refused"):
        await SSHShell().connect("1.2.3.4", SSHCredentials(username="codeagent"))


@patch("agenthost.provisioning.ssh_transport.asyncio.create_subprocess_exec", new_callable=AsyncMock)
async def test_ssh_binary_missing(mock_exec):
    mock_exec.side_effect = FileNotFoundError("ssh")
    with pytest.raises(RemoteShellError, match="not found"):
        await SSHShell().connect("1.2.3.4", SSHCredentials(username="codeagent"))


@patch("agenthost.provisioning.ssh_transport.asyncio.create_subprocess_exec", new_callable=AsyncMock)
async def test_execute_returns_stdout_despite_nonzero_exit(mock_exec):
    """cloud-init status exits non-zero while it is still running."""
    mock_exec.return_value = _proc(2, stdout=b"status: running\n")
    session = SSHSession("codeagent@1.2.3.4", SSHCredentials(username="codeagent"))

    assert await session.execute("sudo cloud-init status") == "status: running\n"
    assert mock_exec.call_args.args[-1] == "sudo cloud-init status"


@patch("agenthost.provisioning.ssh_transport.asyncio.create_subprocess_exec", new_callable=AsyncMock)
async def test_run_connection_error(mock_exec):
    mock_exec.return_value = _proc(255, stderr=b"Connection reset by peer")
    session = SSHSession("codeagent@1.2.3.4", SSHCredentials(username="codeagent"))
    with pytest.raises(RemoteShellError, match="Connection reset"):
        await session.run("true")


@patch("agenthost.provisioning.ssh_transport.asyncio.create_subprocess_exec", new_callable=AsyncMock)
async def test_run_returns_code_and_output(mock_exec):
    mock_exec.return_value = _proc(7, stdout=b"", stderr=b"curl: (7) Failed to connect\n")
    session = SSHSession("codeagent@1.2.3.4", SSHCredentials(username="codeagent"))

    rc, stdout, stderr = await session.run("curl -fsS http://127.0.0.1:8787/healthz")

    assert rc == 7
    assert stdout == ""
    assert stderr == "curl: (7) Failed to connect"
