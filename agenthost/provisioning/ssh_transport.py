"""SSH transport: run commands on provisioned hosts via the system ssh client."""

import asyncio
import logging

from agenthost.provisioning.capabilities import RemoteShellError
from agenthost.provisioning.types import SSHCredentials

logger = logging.getLogger(__name__)

# ssh exits with 255 when it could not connect or authenticate; any other code
# comes from the remote command.
SSH_CONNECTION_ERROR = 255


def ssh_base_args(address, ssh_key, ssh_port, connect_timeout=None):
    """Build base SSH arguments."""
    args = [
        "ssh",
        "-o", "StrictHostKeyChecking=no",
        "-o", "UserKnownHostsFile=/dev/null",
        "-o", "BatchMode=yes",
        "-o", "ServerAliveInterval=60",
        "-o", "ServerAliveCountMax=5",
    ]
    if connect_timeout:
        args += ["-o", f"ConnectTimeout={connect_timeout}"]
    if ssh_key:
        args += ["-i", ssh_key]
    if ssh_port and ssh_port != 22:
        args += ["-p", str(ssh_port)]
    args.append(address)
    return args


def ssh_address(host, username):
    """SSH address string (user@host)."""
    return f"{username}@{host}" if username else host


class SSHSession:
    """Commands against one host. Each command is its own ssh invocation."""

    def __init__(self, address, credentials: SSHCredentials, command_timeout=600):
        self.address = address
        self.credentials = credentials
        self.command_timeout = command_timeout

    def _args(self, command):
        args = ssh_base_args(self.address, self.credentials.private_key_path, self.credentials.port)
        args.append(command)
        return args

    async def execute(self, command, timeout=None):
        """Run *command* and return its stdout.

        A non-zero exit from the remote command is not an error here:
        ``cloud-init status`` exits non-zero exactly when it has something to
        report. Only ssh failing to connect raises.
        """
        _, stdout, _ = await self.run(command, timeout=timeout)
        return stdout

    async def run(self, command, timeout=None):
        """Run *command* and return (returncode, stdout, stderr)."""
        timeout = timeout or self.command_timeout
        try:
            proc = await asyncio.create_subprocess_exec(
                *self._args(command),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            raise RemoteShellError("'ssh' not found. Is it installed and on PATH?") from e

        try:
            stdout_bytes, stderr_bytes = await asyncio.wait_for(proc.communicate(), timeout=timeout)
        except TimeoutError as e:
            proc.kill()
            await proc.wait()
            raise RemoteShellError(f"Command timed out after {timeout}s on {self.address}: {command}") from e

        stderr = stderr_bytes.decode(errors="replace").strip() if stderr_bytes else ""
        if proc.returncode == SSH_CONNECTION_ERROR:
            raise RemoteShellError(f"SSH to {self.address} failed: {stderr or 'connection error'}")
        stdout = stdout_bytes.decode(errors="replace") if stdout_bytes else ""
        return proc.returncode, stdout, stderr

    async def stream(self, command, on_line, timeout=None):
        """Run *command*, calling ``on_line`` for every stdout/stderr line.

        Returns:
            The remote exit code.
        """
        timeout = timeout or self.command_timeout
        try:
            proc = await asyncio.create_subprocess_exec(
                *self._args(command),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            raise RemoteShellError("'ssh' not found. Is it installed and on PATH?") from e

        async def _read_stream(pipe):
            async for raw_line in pipe:
                on_line(raw_line.decode(errors="replace").rstrip("\r\n"))

        try:
            await asyncio.wait_for(
                asyncio.gather(_read_stream(proc.stdout), _read_stream(proc.stderr), proc.wait()),
                timeout=timeout,
            )
        except TimeoutError as e:
            proc.kill()
            await proc.wait()
            raise RemoteShellError(f"Command timed out after {timeout}s on {self.address}: {command}") from e

        if proc.returncode == SSH_CONNECTION_ERROR:
            raise RemoteShellError(f"SSH to {self.address} failed while running: {command}")
        return proc.returncode

    async def close(self):
        # Nothing persistent to tear down: every command is a separate ssh process.
        return None


class SSHShell:
    """RemoteShell implementation backed by the ssh binary."""

    def __init__(self, connect_timeout=5, command_timeout=600):
        self.connect_timeout = connect_timeout
        self.command_timeout = command_timeout

    async def connect(self, address, credentials: SSHCredentials) -> SSHSession:
        """Open a session after confirming the host accepts our key."""
        target = ssh_address(address, credentials.username)
        args = ssh_base_args(target, credentials.private_key_path, credentials.port, connect_timeout=self.connect_timeout)
        args.append("true")
        try:
            proc = await asyncio.create_subprocess_exec(
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            raise RemoteShellError("'ssh' not found. Is it installed and on PATH?") from e
        _, stderr_bytes = await proc.communicate()
        if proc.returncode != 0:
            stderr = stderr_bytes.decode(errors="replace").strip() if stderr_bytes else ""
            raise RemoteShellError(f"Cannot connect to {target}:{credentials.port}: {stderr or f'exit {proc.returncode}'}")
        return SSHSession(target, credentials, command_timeout=self.command_timeout)
