"""
Scripts to control a single service.
"""

from typing import Optional

from .utils import entrypoint, error
from ..plumbing.hosts import Host
from ..tasks.actions import (Action, ActionOutcome, ActionRequest, ServiceActionEngine,
                             ValidationError)


EXIT_OK = 0
EXIT_INVALID = 1
EXIT_NOT_FOUND = 2
EXIT_DIAGNOSTIC = 3


def exit_status(outcome: ActionOutcome) -> int:
    if not outcome.found:
        return EXIT_NOT_FOUND
    elif outcome.diagnostics:
        return EXIT_DIAGNOSTIC
    else:
        return EXIT_OK


def show(outcome: ActionOutcome) -> None:
    for key, value in outcome.record().items():
        print("{}: {}".format(key, value))
    if outcome.diagnostic:
        error(outcome.diagnostic)


@entrypoint
def control(engine: ServiceActionEngine, service: str, action: Action, host: Host, timeout: float,
            force_kill: bool, operator: Optional[str]):
    """
    Apply a lifecycle action to a service, and wait for the service to reach the resulting state.

    ACTION is one of Start, Stop, Restart, Pause or Resume.  SERVICE may be either the service's
    key name or its display name.

    Usage: {script} SERVICE ACTION [--host=HOST] [--timeout=SECONDS] [--force-kill]
                               [--operator=NAME]

    Options:
      --host=HOST          Machine to act on, defaults to this one.
      --timeout=SECONDS    How long to wait for each transition [default: 5].
      --force-kill         Terminate the service's process if it doesn't stop in time.
      --operator=NAME      Name to record against any diagnostics.
    """
    try:
        request = ActionRequest(service, action, host, timeout, force_kill, operator)
    except ValidationError as ex:
        error(str(ex), exit=EXIT_INVALID)
    outcome = engine.apply(request)
    show(outcome)
    return exit_status(outcome)
