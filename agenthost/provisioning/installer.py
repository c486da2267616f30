"""Proxy agent installer: run the published install script over ssh."""

import logging

from agenthost.provisioning.capabilities import ProxyInstallError, RemoteShellError
from agenthost.provisioning.ssh_transport import SSHShell
from agenthost.provisioning.types import HostRecord, SSHCredentials

logger = logging.getLogger(__name__)

DEFAULT_INSTALL_SCRIPT_URL = "https://raw.githubusercontent.com/eugenepyvovarov/codeagents-server-cc-proxy/HEAD/install.sh"
DEFAULT_HEALTH_URL = "http://127.0.0.1:8787/healthz"

# The install script prints "status=error ..." for failures it detects itself.
ERROR_MARKER = "status=error"


def install_command(script_url):
    return f"set -o pipefail; curl -fsSL {script_url} | sudo -n bash"


class ScriptProxyInstaller:
    """Installs the proxy agent by piping the install script into bash."""

    def __init__(self, shell: SSHShell | None = None, script_url=DEFAULT_INSTALL_SCRIPT_URL, health_url=DEFAULT_HEALTH_URL, timeout=1800):
        self.shell = shell or SSHShell()
        self.script_url = script_url
        self.health_url = health_url
        self.timeout = timeout

    async def install(self, host: HostRecord, credentials: SSHCredentials, on_log_line):
        try:
            session = await self.shell.connect(host.public_address, credentials)
        except RemoteShellError as e:
            raise ProxyInstallError(f"Cannot connect to {host.public_address}: {e}") from e

        last_error_line = None

        def _on_line(line):
            nonlocal last_error_line
            if ERROR_MARKER in line:
                last_error_line = line
            on_log_line(line)

        try:
            rc = await session.stream(install_command(self.script_url), _on_line, timeout=self.timeout)
            if last_error_line is not None:
                raise ProxyInstallError(last_error_line)
            if rc != 0:
                raise ProxyInstallError(f"Install script exited with code {rc}")

            rc, _, stderr = await session.run(f"curl -fsS {self.health_url}", timeout=30)
            if rc != 0:
                raise ProxyInstallError(f"Health check failed: {stderr.strip() or f'exit {rc}'}")
        except RemoteShellError as e:
            raise ProxyInstallError(f"Install process failed: {e}") from e
        finally:
            await session.close()
