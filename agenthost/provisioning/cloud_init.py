"""Cloud-init completion checking over ssh."""

import asyncio
import logging
from datetime import datetime, timezone
from enum import Enum

from agenthost.provisioning.capabilities import RemoteShell, RemoteShellError
from agenthost.provisioning.status import StatusBoard
from agenthost.provisioning.types import CloudInitStatus, SSHCredentials

logger = logging.getLogger(__name__)

CLOUD_INIT_STATUS_COMMAND = "sudo cloud-init status"

DEFAULT_INITIAL_DELAY = 10
DEFAULT_INTERVAL = 10
DEFAULT_MAX_ATTEMPTS = 120  # ~20 minutes at the default interval

# First match wins. "disabled" means there is nothing left to wait for.
_STATUS_MARKERS = [
    ("status: done", CloudInitStatus.DONE),
    ("status: running", CloudInitStatus.RUNNING),
    ("status: error", CloudInitStatus.ERROR),
    ("status: disabled", CloudInitStatus.DONE),
]


class CloudInitOutcome(str, Enum):
    DONE = "done"
    ERROR = "error"
    EXHAUSTED = "exhausted"
    CANCELLED = "cancelled"


def parse_cloud_init_status(output: str) -> CloudInitStatus:
    """Map ``cloud-init status`` output to done, running or error.

    Output we cannot interpret still came from a live host, so it counts as
    progress rather than failure.
    """
    for marker, status in _STATUS_MARKERS:
        if marker in output:
            return status
    return CloudInitStatus.RUNNING


class CloudInitChecker:
    """Polls a host until cloud-init reports done or error.

    Connection failures are expected while the VM boots: they only consume an
    attempt. The attempt budget is the only timeout.
    """

    def __init__(
        self,
        shell: RemoteShell,
        initial_delay=DEFAULT_INITIAL_DELAY,
        interval=DEFAULT_INTERVAL,
        max_attempts=DEFAULT_MAX_ATTEMPTS,
    ):
        self.shell = shell
        self.initial_delay = initial_delay
        self.interval = interval
        self.max_attempts = max_attempts

    async def check(self, host: str, credentials: SSHCredentials, board: StatusBoard) -> CloudInitOutcome:
        token = board.token
        logger.info(f"Waiting for cloud-init on {host} (up to {self.max_attempts} checks every {self.interval}s)...")
        await asyncio.sleep(self.initial_delay)

        attempts = 0
        while attempts < self.max_attempts:
            if token.cancelled:
                return CloudInitOutcome.CANCELLED
            attempts += 1
            board.update(cloud_init_check_attempts=attempts, last_checked=datetime.now(timezone.utc))

            status = await self._check_once(host, credentials, board)
            if token.cancelled:
                return CloudInitOutcome.CANCELLED
            if status is not None:
                board.update(cloud_init_status=status)
                logger.info(f"Cloud-init on {host}: {status.value} (check {attempts}/{self.max_attempts})")
                if status == CloudInitStatus.DONE:
                    return CloudInitOutcome.DONE
                if status == CloudInitStatus.ERROR:
                    logger.error(f"Cloud-init reported an error on {host}")
                    return CloudInitOutcome.ERROR

            if attempts < self.max_attempts:
                await asyncio.sleep(self.interval)

        if token.cancelled:
            return CloudInitOutcome.CANCELLED
        logger.warning(f"Cloud-init on {host} did not finish after {self.max_attempts} checks")
        return CloudInitOutcome.EXHAUSTED

    async def _check_once(self, host, credentials, board):
        """One connect + status query. Returns None when the host is not reachable yet."""
        try:
            session = await self.shell.connect(host, credentials)
        except RemoteShellError as e:
            logger.debug(f"SSH not ready on {host}: {e}")
            board.update(ssh_accessible=False)
            return None

        try:
            changes = {"ssh_accessible": True}
            if board.status.cloud_init_status in (CloudInitStatus.CHECKING, CloudInitStatus.WAITING):
                changes["cloud_init_status"] = CloudInitStatus.RUNNING
            board.update(**changes)
            output = await session.execute(CLOUD_INIT_STATUS_COMMAND)
        except RemoteShellError as e:
            logger.debug(f"Cloud-init status query failed on {host}: {e}")
            return None
        finally:
            await _close_quietly(session)

        return parse_cloud_init_status(output)


async def _close_quietly(session):
    try:
        await session.close()
    except RemoteShellError as e:
        logger.debug(f"Ignoring error while closing ssh session: {e}")


async def watch_cloud_init(
    host,
    credentials: SSHCredentials,
    shell: RemoteShell,
    initial_delay=0,
    interval=DEFAULT_INTERVAL,
    max_attempts=DEFAULT_MAX_ATTEMPTS,
):
    """Monitor cloud-init on an already running host.

    Used to re-attach to a VM whose provisioning session is gone.

    Returns:
        (CloudInitOutcome, ProvisioningStatus) tuple.
    """
    board = StatusBoard()
    board.update(cloud_init_status=CloudInitStatus.CHECKING)
    checker = CloudInitChecker(shell, initial_delay=initial_delay, interval=interval, max_attempts=max_attempts)
    outcome = await checker.check(host, credentials, board)
    if outcome == CloudInitOutcome.EXHAUSTED:
        board.update(cloud_init_status=CloudInitStatus.TIMEOUT)
    board.close()
    return outcome, board.status
