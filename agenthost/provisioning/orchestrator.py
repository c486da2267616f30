"""Provisioning orchestration: create a VM and turn it into an agent host.

Phases run strictly in order::

    idle -> creating -> polling -> checking_cloud_init -> installing_proxy -> success
                                                                          \\-> proxy_install_error (retry / skip)
    any phase -> failed(reason)

Each session owns two independently cancellable tasks: the
create/poll/cloud-init pipeline and the proxy install. A caller that stops
caring about a session must call ``cancel()``; after that no status change is
visible, even if a network call that was already in flight completes.
"""

import asyncio
import logging
from dataclasses import dataclass

from agenthost.provisioning.capabilities import (
    CloudProvider,
    InvalidTransitionError,
    ProviderError,
    ProxyInstaller,
    RemoteShell,
)
from agenthost.provisioning.cloud_config import generate_cloud_config
from agenthost.provisioning.cloud_init import CloudInitChecker, CloudInitOutcome
from agenthost.provisioning.proxy_install import ProxyInstallSupervisor
from agenthost.provisioning.ssh_keys import reconcile_ssh_keys
from agenthost.provisioning.status import StatusBoard
from agenthost.provisioning.types import (
    PENDING,
    CloudInitStatus,
    CloudServer,
    HostRecord,
    Known,
    ProviderStatus,
    ProvisioningPhase,
    ProxyInstallStatus,
    ServerSpec,
    SSHCredentials,
)

logger = logging.getLogger(__name__)

SERVER_TIMEOUT_REASON = "server creation timed out"
CLOUD_INIT_ERROR_REASON = "cloud-init configuration failed"
CLOUD_INIT_TIMEOUT_REASON = "cloud-init did not finish in time"


@dataclass
class TimingSettings:
    """Attempt budgets and intervals (seconds) for the polling phases."""

    poll_interval: float = 5
    max_poll_attempts: int = 30
    cloud_init_initial_delay: float = 10
    cloud_init_interval: float = 10
    max_cloud_init_attempts: int = 120
    # Exhausting the cloud-init budget normally still ends in success with the
    # agent install skipped; set this to treat it as a failure instead.
    strict_cloud_init_timeout: bool = False


@dataclass(frozen=True)
class ProvisioningOutcome:
    """How a session ended."""

    phase: ProvisioningPhase
    reason: str | None = None
    cancelled: bool = False

    @property
    def succeeded(self) -> bool:
        return not self.cancelled and self.phase == ProvisioningPhase.SUCCESS


class Orchestrator:
    """Entry point: wires the injected capabilities into new sessions.

    Args:
        provider: cloud provider capability.
        shell: remote shell used for cloud-init checks.
        installer: proxy agent installer, or None to provision hosts without
            the agent (install is recorded as skipped once cloud-init is done).
        timings: attempt budgets and intervals.
    """

    def __init__(
        self,
        provider: CloudProvider,
        shell: RemoteShell,
        installer: ProxyInstaller | None,
        timings: TimingSettings | None = None,
    ):
        self.provider = provider
        self.shell = shell
        self.installer = installer
        self.timings = timings or TimingSettings()

    def create_server(self, spec: ServerSpec) -> "ProvisioningSession":
        """Start provisioning *spec*. Must be called from a running event loop."""
        session = ProvisioningSession(spec, self.provider, self.shell, self.installer, self.timings)
        session.start()
        return session


class ProvisioningSession:
    """One attempt to turn a provider order into a ready host."""

    def __init__(self, spec, provider, shell, installer, timings):
        self.spec = spec
        self.timings = timings
        self.board = StatusBoard()
        self.provider_server_id = PENDING
        self.public_address = PENDING
        self._provider = provider
        self._installer = installer
        self._checker = CloudInitChecker(
            shell,
            initial_delay=timings.cloud_init_initial_delay,
            interval=timings.cloud_init_interval,
            max_attempts=timings.max_cloud_init_attempts,
        )
        self._supervisor = ProxyInstallSupervisor(installer, self.board) if installer is not None else None
        self._host_record = None
        self._pipeline_task = None
        self._install_task = None
        self._done = asyncio.Event()

    # ── Observation ───────────────────────────────────────────────

    @property
    def phase(self) -> ProvisioningPhase:
        return self.board.phase

    @property
    def status(self):
        return self.board.status

    @property
    def last_error(self) -> str | None:
        return self.board.last_error

    @property
    def cancelled(self) -> bool:
        return self.board.token.cancelled

    @property
    def host_record(self) -> HostRecord | None:
        """The host candidate, available once the provider reports the VM ready."""
        return self._host_record

    @property
    def install_log(self) -> list[str]:
        return self._supervisor.log_lines if self._supervisor else []

    @property
    def credentials(self) -> SSHCredentials:
        key = self.spec.credential_key
        return SSHCredentials(
            username=self.spec.username,
            private_key_path=key.private_key_path if key else None,
        )

    def updates(self):
        """Async iterator of StatusSnapshot; ends on success, failure or cancel."""
        return self.board.subscribe()

    async def wait(self) -> ProvisioningOutcome:
        """Wait for success, failure or cancellation.

        A session sitting in proxy_install_error is not finished: it waits for
        retry_install() or skip_install().
        """
        await self._done.wait()
        return ProvisioningOutcome(phase=self.phase, reason=self.last_error, cancelled=self.cancelled)

    # ── Controls ──────────────────────────────────────────────────

    def start(self):
        if self._pipeline_task is not None:
            raise InvalidTransitionError("Session already started")
        self._pipeline_task = asyncio.get_running_loop().create_task(self._guarded(self._run_pipeline(), "provisioning"))

    def cancel(self):
        """Stop all background work. Required before dropping the session.

        Does nothing once the session has succeeded or failed.
        """
        if self.cancelled or self._done.is_set():
            return
        self.board.token.cancel()
        for task in (self._pipeline_task, self._install_task):
            if task is not None and not task.done():
                task.cancel()
        self.board.close()
        self._done.set()
        logger.info("Provisioning session cancelled.")

    def retry_install(self):
        """Run the proxy install again from scratch. Earlier phases are not repeated."""
        if self.phase != ProvisioningPhase.PROXY_INSTALL_ERROR:
            raise InvalidTransitionError(f"Cannot retry proxy install in phase '{self.phase.value}'")
        logger.info("Retrying proxy install...")
        self._start_install()

    def skip_install(self):
        """Give up on the proxy agent; the host is still usable over ssh.

        Allowed after a failed install, which ends the session in success,
        and before the install has started, in which case the session ends
        in success as soon as cloud-init is done.
        """
        if self.phase == ProvisioningPhase.PROXY_INSTALL_ERROR:
            self._supervisor.skip()
            self._finish(ProvisioningPhase.SUCCESS)
            return
        if (
            self.cancelled
            or self.phase.is_terminal
            or self.phase == ProvisioningPhase.INSTALLING_PROXY
            or self.status.proxy_install_status != ProxyInstallStatus.WAITING
        ):
            raise InvalidTransitionError(f"Cannot skip proxy install in phase '{self.phase.value}'")
        if self._supervisor is not None:
            self._supervisor.skip()
        else:
            self.board.update(proxy_install_status=ProxyInstallStatus.SKIPPED)

    # ── Pipeline ──────────────────────────────────────────────────

    async def _guarded(self, coro, label):
        try:
            await coro
        except Exception as e:
            logger.exception(f"Unexpected error during {label}")
            self._fail(f"unexpected error during {label}: {e}")

    async def _run_pipeline(self):
        spec = self.spec
        self.board.set_phase(ProvisioningPhase.CREATING, clear_error=True)

        try:
            key_ids = await reconcile_ssh_keys(spec.ssh_keys, self._provider)
        except ProviderError as e:
            self._fail(f"SSH key setup failed: {e}")
            return
        if self.cancelled:
            return

        user_data = spec.first_boot_script or generate_cloud_config(
            [k.public_key for k in spec.ssh_keys], username=spec.username
        )
        logger.info(f"Creating server '{spec.name}' (region={spec.region}, size={spec.size}, image={spec.image})...")
        try:
            server = await self._provider.create_server(spec.name, spec.region, spec.size, spec.image, key_ids, user_data)
        except ProviderError as e:
            self._fail(f"server creation failed: {e}")
            return
        if self.cancelled:
            return

        self.provider_server_id = Known(server.id)
        self._record_address(server)
        self.board.update(provider_status=ProviderStatus.from_reported(server.status))
        logger.info(f"Server ordered (id={server.id}). Waiting for it to become active...")

        self.board.set_phase(ProvisioningPhase.POLLING, clear_error=True)
        await self._poll_until_ready(server.id)
        if self.cancelled:
            return

        if self._host_record is None:
            self._fail(SERVER_TIMEOUT_REASON)
            return
        await self._check_cloud_init()

    async def _poll_until_ready(self, server_id):
        """Poll the provider until the VM is ready and reachable by address.

        Individual poll failures of any kind only cost an attempt. A ready
        status is not enough on its own: until the provider also reports a
        public address the VM cannot be reached, so polling continues instead
        of failing on the missing address.
        """
        max_attempts = self.timings.max_poll_attempts
        for attempt in range(1, max_attempts + 1):
            if self.cancelled:
                return
            await asyncio.sleep(self.timings.poll_interval)
            if self.cancelled:
                return
            self.board.update(provider_poll_attempts=attempt)

            try:
                server = await self._provider.get_server(server_id)
            except ProviderError as e:
                logger.warning(f"Poll {attempt}/{max_attempts} failed: {e}")
                continue
            except Exception as e:
                logger.warning(f"Poll {attempt}/{max_attempts} failed unexpectedly: {type(e).__name__}: {e}")
                continue
            if self.cancelled:
                return
            if server is None:
                logger.warning(f"Server {server_id} not found (poll {attempt}/{max_attempts}).")
                continue

            self._record_address(server)
            status = ProviderStatus.from_reported(server.status)
            self.board.update(provider_status=status)
            if not status.is_ready:
                continue
            if not self.public_address:
                logger.info(f"Server {server_id} is {status.value} but has no public address yet.")
                continue

            logger.info(f"Server is {status.value} at {self.public_address.value}.")
            self._materialize_host_record(server)
            return

        logger.error(f"Server {server_id} not ready after {max_attempts} polls (last status: {self.status.provider_status.value})")

    def _record_address(self, server: CloudServer):
        if server.public_address and not self.cancelled:
            self.public_address = Known(server.public_address)

    def _materialize_host_record(self, server: CloudServer):
        """Build the host candidate. Runs at most once per session."""
        if self._host_record is not None or self.cancelled:
            return
        key = self.spec.credential_key
        self._host_record = HostRecord(
            name=server.name or self.spec.name,
            public_address=self.public_address.value,
            provider_server_id=server.id,
            credential_ref=key.name if key else None,
            username=self.spec.username,
        )

    async def _check_cloud_init(self):
        self.board.set_phase(ProvisioningPhase.CHECKING_CLOUD_INIT, clear_error=True)
        self.board.update(cloud_init_status=CloudInitStatus.CHECKING)

        outcome = await self._checker.check(self._host_record.public_address, self.credentials, self.board)
        if outcome == CloudInitOutcome.CANCELLED or self.cancelled:
            return
        if outcome == CloudInitOutcome.ERROR:
            self._fail(CLOUD_INIT_ERROR_REASON)
            return
        if outcome == CloudInitOutcome.EXHAUSTED:
            self.board.update(cloud_init_status=CloudInitStatus.TIMEOUT)
            if self.timings.strict_cloud_init_timeout:
                self._fail(CLOUD_INIT_TIMEOUT_REASON)
                return
            logger.warning("Cloud-init did not finish in time. The host is usable, but the proxy agent was not installed.")
            self.board.update(proxy_install_status=ProxyInstallStatus.SKIPPED)
            self._finish(ProvisioningPhase.SUCCESS)
            return

        self._host_record.cloud_init_complete = True
        if self._supervisor is None or self.status.proxy_install_status == ProxyInstallStatus.SKIPPED:
            self.board.update(proxy_install_status=ProxyInstallStatus.SKIPPED)
            self._finish(ProvisioningPhase.SUCCESS)
            return
        self._start_install()

    # ── Proxy install ─────────────────────────────────────────────

    def _start_install(self):
        if self._install_task is not None and not self._install_task.done():
            self._install_task.cancel()
        self.board.set_phase(ProvisioningPhase.INSTALLING_PROXY, clear_error=True)
        self._install_task = asyncio.get_running_loop().create_task(self._guarded(self._run_install(), "proxy install"))

    async def _run_install(self):
        ok = await self._supervisor.install(self._host_record, self.credentials)
        if self.cancelled:
            return
        if ok:
            self._finish(ProvisioningPhase.SUCCESS)
        else:
            self.board.set_phase(ProvisioningPhase.PROXY_INSTALL_ERROR)

    # ── Terminal transitions ──────────────────────────────────────

    def _fail(self, reason):
        if self.cancelled:
            return
        logger.error(f"Provisioning failed: {reason}")
        self._finish(ProvisioningPhase.FAILED, reason)

    def _finish(self, phase, reason=None):
        if self.cancelled or self.board.closed:
            return
        self.board.set_phase(phase, error=reason, clear_error=reason is None)
        self.board.close()
        self._done.set()
