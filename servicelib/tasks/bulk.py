"""
Sample fan-out of one action across many (host, service) pairs, with a daily summary report.

Reports are rendered with Jinja2 from the `templates` directory of this module.  The following
filters are available to templates:

- `state_label` for an outcome's final state, or ``NotFound``
"""

from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
import logging
import os
import os.path
from typing import Iterable, List, Optional, Tuple, Union

from jinja2 import Environment, FileSystemLoader

from .actions import Action, ActionOutcome, ActionRequest, DEFAULT_TIMEOUT, ServiceActionEngine
from ..plumbing.services import inspect


LOG = logging.getLogger(__name__)

ENV = Environment(loader=FileSystemLoader(os.path.join(os.path.dirname(__file__), "templates")),
                  trim_blocks=True, lstrip_blocks=True)

ENV.filters.update({"state_label": lambda outcome: outcome.record()["state"]})

Target = Tuple[str, str]
"""
A `(host, service name)` pair.
"""


def read_targets(lines: Iterable[str]) -> List[Target]:
    """
    Parse ``host service`` lines, ignoring blanks and ``#`` comments.  Service names may contain
    spaces (e.g. display names); the host is always the first word.
    """
    targets = []
    for num, line in enumerate(lines, 1):
        line = line.split("#", 1)[0].strip()
        if not line:
            continue
        try:
            host, name = line.split(None, 1)
        except ValueError:
            raise ValueError("Line {}: expected 'host service', got {!r}".format(num, line))
        targets.append((host, name.strip()))
    return targets


def _dedupe(engine: ServiceActionEngine,
            requests: Iterable[ActionRequest]) -> List[ActionRequest]:
    """
    Drop requests naming a service already targeted, whether by key name or by display name.
    """
    seen = set()
    unique = []
    for request in requests:
        service = inspect(engine.control, request.service_name, request.host)
        name = service.identity if service else request.service_name
        key = (request.host.lower(), name.lower())
        if key in seen:
            LOG.debug("Skipping duplicate target %s/%s", request.host, request.service_name)
            continue
        seen.add(key)
        unique.append(request)
    return unique


def run(engine: ServiceActionEngine, targets: Iterable[Target], action: Union[Action, str],
        timeout: float = DEFAULT_TIMEOUT, force_kill: bool = False,
        operator: Optional[str] = None, workers: int = 1) -> List[ActionOutcome]:
    """
    Apply an action to every target, returning outcomes in target order.

    Targets are resolved to their service key names first, and each (host, service) pair is only
    acted on once per run, so parallel workers never touch the same service at the same time.
    All requests are validated before any service is looked up.  A failure for one target never
    stops the others.
    """
    requests = [ActionRequest(name, action, host, timeout, force_kill, operator)
                for host, name in targets]
    requests = _dedupe(engine, requests)
    LOG.info("Applying %s to %d service(s) with %d worker(s)", Action.parse(action),
             len(requests), workers)
    if workers > 1:
        with ThreadPoolExecutor(max_workers=workers) as pool:
            return list(pool.map(engine.apply, requests))
    return [engine.apply(request) for request in requests]


def render(action: Union[Action, str], outcomes: List[ActionOutcome],
           started: Optional[datetime] = None) -> str:
    """
    Render a plain text report of a run's outcomes.
    """
    context = {"action": Action.parse(action), "outcomes": outcomes,
               "started": started or datetime.now()}
    return ENV.get_template("summary.j2").render(context)


def write_summary(directory: str, report: str, now: Optional[datetime] = None) -> str:
    """
    Append a report to the summary file for the day, creating it if needed.
    """
    os.makedirs(directory, exist_ok=True)
    path = os.path.join(directory, "summary-{}.txt".format((now or datetime.now())
                                                           .strftime("%Y%m%d")))
    with open(path, "a", encoding="utf-8") as summary:
        summary.write(report)
        if not report.endswith("\n"):
            summary.write("\n")
    LOG.debug("Wrote summary to %r", path)
    return path
