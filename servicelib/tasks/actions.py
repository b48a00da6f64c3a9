"""
Lifecycle actions against a single service: deciding which transitions are needed, requesting them,
and waiting for the results.

The decision of what to do is made once, up front, by `plan` from the service's current state.
Carrying it out is the job of `ServiceActionEngine`, which checks the observed state before each leg
and gives up (with a diagnostic) as soon as reality diverges from the plan.
"""

from enum import Enum
import logging
import math
import time
from typing import Any, Callable, Dict, Optional, Tuple, Union

from ..plumbing.common import Collect, local_host, Result, State
from ..plumbing.services import (ControlError, inspect, NotFound, ProcessControl, ServiceControl,
                                 ServiceDescriptor, ServiceState, TerminationError)


LOG = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 5.0
"""
Seconds to wait for each individual transition to complete.
"""

WAIT_POLL = 0.25
"""
Seconds between observations while waiting for a transition.
"""

KILL_POLL = 1.0
"""
Seconds between checks for a terminated process going away.
"""

KILL_CEILING = 60.0
"""
Seconds to wait for a terminated process to go away, regardless of the transition timeout.
"""


class ValidationError(ValueError):
    """
    An action request is malformed, and was rejected without touching the service.
    """


class Action(Enum):
    """
    Lifecycle action that can be requested for a service.
    """

    start = "Start"
    stop = "Stop"
    restart = "Restart"
    pause = "Pause"
    resume = "Resume"

    @classmethod
    def parse(cls, value: Union["Action", str]) -> "Action":
        """
        Look up an action by name, case-insensitively.
        """
        if isinstance(value, cls):
            return value
        for action in cls:
            if str(value).strip().lower() == action.name:
                return action
        raise ValidationError("Unknown action {!r}, expected one of: {}"
                              .format(value, ", ".join(action.value for action in cls)))

    def __str__(self):
        return self.value


class Leg(Enum):
    """
    Single transition request, along with the state it's valid from and the state it leads to.
    """

    start = ("start", ServiceState.stopped, ServiceState.running)
    stop = ("stop", ServiceState.running, ServiceState.stopped)
    resume = ("resume", ServiceState.paused, ServiceState.running)

    def __init__(self, verb: str, source: ServiceState, target: ServiceState):
        self.verb = verb
        self.source = source
        self.target = target


_TABLE: Dict[Action, Dict[ServiceState, Tuple[Leg, ...]]] = {
    Action.start: {ServiceState.running: (),
                   ServiceState.paused: (Leg.resume,),
                   ServiceState.stopped: (Leg.start,)},
    Action.stop: {ServiceState.running: (Leg.stop,),
                  ServiceState.paused: (Leg.resume, Leg.stop),
                  ServiceState.stopped: ()},
    Action.restart: {ServiceState.running: (Leg.stop, Leg.start),
                     ServiceState.paused: (Leg.resume, Leg.stop, Leg.start),
                     ServiceState.stopped: (Leg.start,)},
    # Paused and stopped both count as not running, and a running service is left alone.
    Action.pause: {ServiceState.running: (),
                   ServiceState.paused: (),
                   ServiceState.stopped: ()},
    Action.resume: {ServiceState.running: (),
                    ServiceState.paused: (Leg.resume,),
                    ServiceState.stopped: (Leg.start,)},
}


def plan(state: ServiceState, action: Action) -> Optional[Tuple[Leg, ...]]:
    """
    Decide the ordered transitions needed to carry out an action from the given state.

    An empty tuple means the action is already satisfied.  `None` means the service is
    mid-transition or in an unknown state, and nothing should be attempted.
    """
    return _TABLE[action].get(state)


class ActionRequest:
    """
    Validated request to apply an action to a named service.
    """

    def __init__(self, service_name: str, action: Union[Action, str], host: Optional[str] = None,
                 timeout: float = DEFAULT_TIMEOUT, force_kill: bool = False,
                 operator: Optional[str] = None):
        if not service_name or not service_name.strip():
            raise ValidationError("Service name must not be empty")
        try:
            timeout = float(timeout)
        except (TypeError, ValueError):
            raise ValidationError("Timeout {!r} is not a number".format(timeout)) from None
        if not math.isfinite(timeout) or timeout <= 0:
            raise ValidationError("Timeout must be a positive number of seconds, got {}"
                                  .format(timeout))
        self.service_name = service_name.strip()
        self.action = Action.parse(action)
        self.host = host or local_host()
        self.timeout = timeout
        self.force_kill = bool(force_kill)
        self.operator = operator

    def __repr__(self):
        return ("<{}: {} {!r} on {} timeout={} force_kill={}>"
                .format(self.__class__.__name__, self.action, self.service_name, self.host,
                        self.timeout, self.force_kill))


class ActionOutcome:
    """
    Final report of an action: the last observed state of the service, plus any diagnostics.

    If the service couldn't be found, `found` is `False` and `final_state` is `None`.
    """

    def __init__(self, host: str, service_name: str, display_name: Optional[str] = None,
                 final_state: Optional[ServiceState] = None, diagnostics: Tuple[str, ...] = (),
                 result: Optional[Result[Any]] = None):
        self.host = host
        self.service_name = service_name
        self.display_name = display_name or service_name
        self.final_state = final_state
        self.diagnostics = tuple(diagnostics)
        self.result = result

    @property
    def found(self) -> bool:
        return self.final_state is not None

    @property
    def diagnostic(self) -> Optional[str]:
        """
        All diagnostics combined into a single message, or `None` if everything went to plan.
        """
        return "; ".join(self.diagnostics) if self.diagnostics else None

    def record(self) -> Dict[str, str]:
        """
        Summary of the outcome as shown to users.
        """
        return {"host": self.host,
                "displayName": self.display_name,
                "name": self.service_name,
                "state": str(self.final_state) if self.found else "NotFound"}

    def __repr__(self):
        return "<{}: {} on {} {}>".format(self.__class__.__name__, self.service_name, self.host,
                                          self.final_state or "NotFound")


class _Diagnostics(list):

    def __init__(self, operator: Optional[str]):
        super().__init__()
        self.operator = operator

    def add(self, msg: str, *args: object) -> None:
        msg = msg.format(*args)
        LOG.warning(msg, extra={"operator": self.operator})
        if self.operator:
            msg = "{} (requested by {})".format(msg, self.operator)
        self.append(msg)


class ServiceActionEngine:
    """
    State machine that applies lifecycle actions to one service at a time.

    The engine keeps no state between calls to `apply`, so one instance can serve requests for
    different services concurrently.  Requests for the same service must be serialised by the
    caller.

    The clock and sleep functions are injectable, so that waits can be simulated without delays.
    """

    def __init__(self, control: ServiceControl, processes: ProcessControl,
                 clock: Callable[[], float] = time.monotonic,
                 sleep: Callable[[float], None] = time.sleep,
                 wait_poll: float = WAIT_POLL, kill_poll: float = KILL_POLL,
                 kill_ceiling: float = KILL_CEILING):
        self.control = control
        self.processes = processes
        self.clock = clock
        self.sleep = sleep
        self.wait_poll = wait_poll
        self.kill_poll = kill_poll
        self.kill_ceiling = kill_ceiling

    def apply(self, request: ActionRequest) -> ActionOutcome:
        """
        Carry out a request, and report the final observed state of the service.
        """
        if not isinstance(request, ActionRequest):
            raise ValidationError("Expected an ActionRequest, got {!r}".format(request))
        LOG.info("%s %r on %s", request.action, request.service_name, request.host)
        diag = _Diagnostics(request.operator)
        service = inspect(self.control, request.service_name, request.host)
        if isinstance(service, NotFound):
            diag.add("Service {!r} not found on {}: {}", request.service_name, request.host,
                     service.reason)
            return ActionOutcome(request.host, request.service_name, diagnostics=diag)
        LOG.info("Service %s (%s) is %s", service.identity, service.display_name, service.state)
        legs = plan(service.state, request.action)
        if legs is None:
            diag.add("Service {} is {}, not acting until it settles", service.identity,
                     service.state)
            return ActionOutcome(service.host, service.identity, service.display_name,
                                 service.state, diag)
        if not legs:
            LOG.info("Nothing to do, %s is already %s", service.identity, service.state)
        result = self._run(service, legs, request, diag)
        last = result.value
        return ActionOutcome(service.host, service.identity, service.display_name,
                             last.state if last else None, diag, result)

    @Result.collect
    def _run(self, service: ServiceDescriptor, legs: Tuple[Leg, ...], request: ActionRequest,
             diag: _Diagnostics) -> Collect[Union[ServiceDescriptor, NotFound]]:
        current: Union[ServiceDescriptor, NotFound] = service
        for i, leg in enumerate(legs):
            if i:
                current = inspect(self.control, service.identity, service.host)
            if isinstance(current, NotFound):
                diag.add("Service {} disappeared from {} before it could {}", service.identity,
                         service.host, leg.verb)
                break
            if current.state is not leg.source:
                diag.add("Can't {} {} while it is {}", leg.verb, current.identity, current.state)
                break
            result = yield from self._leg(current, leg, request, diag)
            current = result.value
        return current

    @Result.collect
    def _leg(self, service: ServiceDescriptor, leg: Leg, request: ActionRequest,
             diag: _Diagnostics) -> Collect[Union[ServiceDescriptor, NotFound]]:
        LOG.info("Requesting %s of %s, expecting %s", leg.verb, service.identity, leg.target)
        yield self._request(service, leg, diag)
        observed = yield from self._wait(service, leg.target, request.timeout, diag)
        if observed.value and observed.value.state is leg.target:
            return observed.value
        if leg is not Leg.stop or isinstance(observed.value, NotFound):
            return observed.value
        if not request.force_kill:
            LOG.info("Not forcing %s to stop", service.identity)
            return observed.value
        yield self.force_kill(service, diag)
        return inspect(self.control, service.identity, service.host)

    def _request(self, service: ServiceDescriptor, leg: Leg, diag: _Diagnostics) -> Result[None]:
        try:
            getattr(self.control, leg.verb)(service)
        except ControlError as ex:
            diag.add("Failed to {} {}: {}", leg.verb, service.identity, ex)
            return Result(State.failed, caller=self._request)
        return Result(State.success, caller=self._request)

    def _wait(self, service: ServiceDescriptor, target: ServiceState, timeout: float,
              diag: _Diagnostics) -> Result[Union[ServiceDescriptor, NotFound]]:
        observed = self.wait_for_state(service.identity, service.host, target, timeout)
        if observed and observed.state is target:
            LOG.info("Service %s reached %s", service.identity, target)
            return Result(State.success, observed, caller=self._wait)
        diag.add("Service {} didn't reach {} within {}s, now {}", service.identity, target,
                 timeout, observed.state if observed else "missing")
        return Result(State.failed, observed, caller=self._wait)

    def wait_for_state(self, name: str, host: str, target: ServiceState,
                       timeout: float) -> Union[ServiceDescriptor, NotFound]:
        """
        Observe a service repeatedly until it reports the target state, or until the timeout has
        elapsed.  Returns the last observation either way.
        """
        deadline = self.clock() + timeout
        while True:
            observed = inspect(self.control, name, host)
            if observed and observed.state is target:
                return observed
            remaining = deadline - self.clock()
            if remaining <= 0:
                return observed
            self.sleep(min(self.wait_poll, remaining))

    def force_kill(self, service: ServiceDescriptor, diag: _Diagnostics) -> Result[Optional[int]]:
        """
        Terminate the backing process of a service that won't stop, and wait (up to a fixed
        ceiling) for the process to go away.
        """
        try:
            pid = self.control.process_id(service.identity, service.host)
        except ControlError as ex:
            diag.add("Couldn't look up process of {} on {}: {}", service.identity, service.host,
                     ex)
            pid = None
        if pid is None:
            diag.add("No process found for {} on {}, nothing to terminate", service.identity,
                     service.host)
            return Result(State.unchanged, None, caller=self.force_kill)
        LOG.info("Terminating process %d of %s on %s", pid, service.identity, service.host)
        try:
            self.processes.terminate(pid, service.host)
        except TerminationError as ex:
            diag.add("Failed to terminate process {} of {}: {}", pid, service.identity, ex)
            return Result(State.failed, pid, caller=self.force_kill)
        deadline = self.clock() + self.kill_ceiling
        while self._alive(pid, service.host):
            if self.clock() >= deadline:
                diag.add("Process {} of {} still present after {}s", pid, service.identity,
                         self.kill_ceiling)
                return Result(State.failed, pid, caller=self.force_kill)
            LOG.debug("Waiting for process %d to exit", pid)
            self.sleep(self.kill_poll)
        LOG.info("Process %d of %s has exited", pid, service.identity)
        return Result(State.success, pid, caller=self.force_kill)

    def _alive(self, pid: int, host: str) -> bool:
        try:
            return self.processes.exists(pid, host)
        except (ControlError, TerminationError) as ex:
            # Can't tell either way, keep polling until the ceiling.
            LOG.debug("Couldn't check process %d on %s: %s", pid, host, ex)
            return True
