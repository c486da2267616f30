"""Session status board: single writer, cancellation gate, snapshot stream."""

import asyncio
import dataclasses
import logging
from dataclasses import dataclass

from agenthost.provisioning.types import ProvisioningPhase, ProvisioningStatus

logger = logging.getLogger(__name__)


class CancelToken:
    """Cooperative cancellation flag shared by every activity of one session."""

    def __init__(self):
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self):
        self._cancelled = True


@dataclass(frozen=True)
class StatusSnapshot:
    """Immutable view of a session at one point in time."""

    phase: ProvisioningPhase
    status: ProvisioningStatus
    last_error: str | None = None


class StatusBoard:
    """Owns a session's status aggregate and publishes every change.

    Every write goes through :meth:`update` or :meth:`set_phase`, which refuse
    to mutate anything once the token is cancelled. In-flight network calls
    that resolve after ``cancel()`` therefore cannot leak into what observers
    see.
    """

    def __init__(self, token: CancelToken | None = None):
        self.token = token or CancelToken()
        self._status = ProvisioningStatus()
        self._phase = ProvisioningPhase.IDLE
        self._last_error = None
        self._subscribers: list[asyncio.Queue] = []
        self._closed = False

    @property
    def status(self) -> ProvisioningStatus:
        """A copy of the current status; mutate through update()."""
        return dataclasses.replace(self._status)

    @property
    def phase(self) -> ProvisioningPhase:
        return self._phase

    @property
    def last_error(self) -> str | None:
        return self._last_error

    @property
    def closed(self) -> bool:
        return self._closed

    def snapshot(self) -> StatusSnapshot:
        return StatusSnapshot(phase=self._phase, status=self.status, last_error=self._last_error)

    def update(self, **changes) -> bool:
        """Apply status field changes. Returns False if the session is cancelled."""
        if self.token.cancelled or self._closed:
            return False
        for name in changes:
            if not hasattr(self._status, name):
                raise AttributeError(f"ProvisioningStatus has no field '{name}'")
        self._status = dataclasses.replace(self._status, **changes)
        self._publish()
        return True

    def set_phase(self, phase: ProvisioningPhase, error=None, clear_error=False) -> bool:
        """Move to *phase*, recording *error* or clearing the previous one."""
        if self.token.cancelled or self._closed:
            return False
        logger.debug(f"Phase {self._phase.value} -> {phase.value}")
        self._phase = phase
        if error is not None:
            self._last_error = error
        elif clear_error:
            self._last_error = None
        self._publish()
        return True

    def set_error(self, error) -> bool:
        if self.token.cancelled or self._closed:
            return False
        self._last_error = error
        self._publish()
        return True

    def close(self):
        """End every subscriber's stream. Later writes are ignored."""
        if self._closed:
            return
        self._closed = True
        for queue in self._subscribers:
            queue.put_nowait(None)

    async def subscribe(self):
        """Yield the current snapshot, then every later one until close()."""
        queue: asyncio.Queue = asyncio.Queue()
        queue.put_nowait(self.snapshot())
        if self._closed:
            queue.put_nowait(None)
        self._subscribers.append(queue)
        try:
            while True:
                snapshot = await queue.get()
                if snapshot is None:
                    return
                yield snapshot
        finally:
            self._subscribers.remove(queue)

    def _publish(self):
        snapshot = self.snapshot()
        for queue in self._subscribers:
            queue.put_nowait(snapshot)
