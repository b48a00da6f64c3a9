"""
Scripts to apply an action across many services at once.
"""

import os
from typing import Optional

from .service import EXIT_DIAGNOSTIC, EXIT_INVALID, EXIT_OK
from .utils import DocOptArgs, entrypoint, error, LOG_DIR_ENV
from ..plumbing.hosts import resolve
from ..tasks import bulk
from ..tasks.actions import Action, ServiceActionEngine, ValidationError


@entrypoint
def run(opts: DocOptArgs, engine: ServiceActionEngine, file: str, action: Action, timeout: float,
        force_kill: bool, workers: int, operator: Optional[str]):
    """
    Apply an action to every service listed in a file, and write a summary report.

    FILE holds one target per line, as a host name followed by a service name; blank lines and
    lines starting with # are ignored.  The report is printed, and appended to the day's summary
    file in the log directory if one is set.

    Usage: {script} FILE ACTION [--timeout=SECONDS] [--force-kill] [--workers=N]
                            [--operator=NAME]

    Options:
      --timeout=SECONDS    How long to wait for each transition [default: 5].
      --force-kill         Terminate processes of services that don't stop in time.
      --workers=N          Number of services to act on at once [default: 1].
      --operator=NAME      Name to record against any diagnostics.
    """
    try:
        with open(file, encoding="utf-8") as lines:
            targets = [(resolve(host), name) for host, name in bulk.read_targets(lines)]
    except (OSError, ValueError) as ex:
        error("Couldn't read targets: {}".format(ex), exit=EXIT_INVALID)
    try:
        outcomes = bulk.run(engine, targets, action, timeout, force_kill, operator,
                            max(workers, 1))
    except ValidationError as ex:
        error(str(ex), exit=EXIT_INVALID)
    report = bulk.render(action, outcomes)
    print(report)
    log_dir = opts.get("--log-dir") or os.getenv(LOG_DIR_ENV)
    if log_dir:
        bulk.write_summary(log_dir, report)
    return EXIT_DIAGNOSTIC if any(outcome.diagnostics for outcome in outcomes) else EXIT_OK
