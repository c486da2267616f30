"""Proxy agent install supervision: log capture, retry and skip."""

import logging
from collections import deque

from agenthost.provisioning.capabilities import InvalidTransitionError, ProxyInstaller, ProxyInstallError
from agenthost.provisioning.status import StatusBoard
from agenthost.provisioning.types import HostRecord, ProxyInstallStatus, SSHCredentials

logger = logging.getLogger(__name__)

MAX_LOG_LINES = 200


class ProxyInstallSupervisor:
    """Runs the install capability and keeps its recent output.

    Every call to :meth:`install` is a fresh attempt. A failure leaves the
    log buffer in place for diagnosis; retrying is up to the caller.
    """

    def __init__(self, installer: ProxyInstaller, board: StatusBoard, max_log_lines=MAX_LOG_LINES):
        self.installer = installer
        self.board = board
        self._log = deque(maxlen=max_log_lines)

    @property
    def log_lines(self) -> list[str]:
        return list(self._log)

    def _on_log_line(self, line):
        if self.board.token.cancelled:
            return
        self._log.append(line)
        logger.info(f"  {line}")

    async def install(self, host: HostRecord, credentials: SSHCredentials) -> bool:
        """Install the agent on *host*. Returns True on success."""
        self._log.clear()
        self.board.set_error(None)
        self.board.update(proxy_install_status=ProxyInstallStatus.RUNNING)
        logger.info(f"Installing proxy agent on {host.public_address}...")

        try:
            await self.installer.install(host, credentials, self._on_log_line)
        except ProxyInstallError as e:
            logger.error(f"Proxy install failed: {e}")
            self._record_failure(str(e))
            return False
        except Exception as e:
            # Any installer failure is recoverable through retry or skip.
            logger.exception("Proxy install failed unexpectedly")
            self._record_failure(str(e) or type(e).__name__)
            return False

        self.board.update(proxy_install_status=ProxyInstallStatus.DONE)
        logger.info("Proxy agent installed.")
        return True

    def _record_failure(self, error):
        self.board.set_error(error)
        self.board.update(proxy_install_status=ProxyInstallStatus.ERROR)

    def skip(self):
        """Give up on the agent without running the installer."""
        current = self.board.status.proxy_install_status
        if current not in (ProxyInstallStatus.WAITING, ProxyInstallStatus.ERROR):
            raise InvalidTransitionError(f"Cannot skip proxy install while it is {current.value}")
        self.board.set_error(None)
        self.board.update(proxy_install_status=ProxyInstallStatus.SKIPPED)
        logger.info("Proxy install skipped.")
