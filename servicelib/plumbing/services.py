"""
Service states and descriptors, the control ports the action engine relies on, and the inspector
used to observe a service.

A port is anything implementing the `ServiceControl` or `ProcessControl` protocol -- see
`servicelib.plumbing.windows` for the service control manager implementation, and the test fakes
for in-memory ones.
"""

from enum import Enum
import logging
from typing import NamedTuple, Optional, Protocol, Union


LOG = logging.getLogger(__name__)


class ServiceState(Enum):
    """
    Observable state of a service, as reported by the service control manager.
    """

    stopped = "Stopped"
    start_pending = "StartPending"
    stop_pending = "StopPending"
    running = "Running"
    continue_pending = "ContinuePending"
    pause_pending = "PausePending"
    paused = "Paused"
    unknown = "Unknown"

    @property
    def settled(self) -> bool:
        """
        Whether the service is at rest, i.e. not mid-transition and not in an unrecognised state.
        """
        return self in (ServiceState.stopped, ServiceState.running, ServiceState.paused)

    def __str__(self):
        return self.value


class ServiceDescriptor(NamedTuple):
    """
    Snapshot of one service at one instant.  Never updated in place: observe again instead.
    """

    identity: str
    display_name: str
    host: str
    state: ServiceState


class NotFound(NamedTuple):
    """
    Marker returned by `inspect` when a service can't be observed.

    The host being unreachable, access being denied, and the service not existing all look the
    same to callers -- `reason` is for diagnostics only.
    """

    name: str
    host: str
    reason: str = "not found"

    def __bool__(self):
        return False


Inspection = Union[ServiceDescriptor, NotFound]


class ControlError(RuntimeError):
    """
    A transition request or query to the service control manager failed to execute.
    """


class TerminationError(RuntimeError):
    """
    A request to forcefully terminate a process failed to execute.
    """


class ServiceControl(Protocol):
    """
    Capability to observe services on a host, and to request transitions between their states.
    """

    def query(self, name: str, host: str) -> Optional[ServiceDescriptor]:
        """
        Look up a service by its identity or display name.  Returns `None` if there's no match.

        Raises `ControlError` if the host can't be queried at all.
        """

    def start(self, service: ServiceDescriptor) -> None: ...

    def stop(self, service: ServiceDescriptor) -> None: ...

    def pause(self, service: ServiceDescriptor) -> None: ...

    def resume(self, service: ServiceDescriptor) -> None: ...

    def process_id(self, name: str, host: str) -> Optional[int]:
        """
        Find the backing process of a service, or `None` if it has no live process.
        """


class ProcessControl(Protocol):
    """
    Capability to forcefully end processes on a host.
    """

    def terminate(self, pid: int, host: str) -> None: ...

    def exists(self, pid: int, host: str) -> bool: ...


def inspect(control: ServiceControl, name: str, host: str) -> Inspection:
    """
    Observe the current state of a service, by identity or display name.

    Lookup failures of any kind produce a `NotFound` rather than raising, so that this is always
    safe to call, including straight after a transition request that itself failed.
    """
    try:
        service = control.query(name, host)
    except ControlError as ex:
        LOG.debug("Query of %r on %s failed: %s", name, host, ex)
        return NotFound(name, host, str(ex))
    if service is None:
        return NotFound(name, host)
    LOG.debug("Observed %s on %s: %s", service.identity, host, service.state)
    return service
