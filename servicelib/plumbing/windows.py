"""
Service and process control through the Windows service control manager.

All calls shell out to the stock tools (`sc.exe`, `taskkill.exe`, `tasklist.exe`), which accept a
remote machine name, so the same code drives both local and remote hosts.
"""

import logging
import re
import subprocess
from typing import Dict, List, Optional

from .common import command
from .hosts import is_local
from .services import ControlError, ServiceDescriptor, ServiceState, TerminationError


LOG = logging.getLogger(__name__)

SC = "sc.exe"
TASKKILL = "taskkill.exe"
TASKLIST = "tasklist.exe"

ERROR_SERVICE_DOES_NOT_EXIST = 1060

_STATE_CODES = {1: ServiceState.stopped,
                2: ServiceState.start_pending,
                3: ServiceState.stop_pending,
                4: ServiceState.running,
                5: ServiceState.continue_pending,
                6: ServiceState.pause_pending,
                7: ServiceState.paused}

_FIELD = re.compile(r"^\s*([A-Z_0-9]+)\s*:\s*(.*?)\s*$")
_NAME = re.compile(r"^\s*Name\s*=\s*(.*?)\s*$", re.MULTILINE)


def _decode(raw: Optional[bytes]) -> str:
    return raw.decode("utf-8", "replace") if raw else ""


def parse_queryex(text: str) -> Dict[str, str]:
    """
    Split `sc queryex` output into its `KEY : value` fields.  Continuation lines are ignored.
    """
    fields = {}
    for line in text.splitlines():
        match = _FIELD.match(line)
        if match:
            fields[match.group(1)] = match.group(2)
    return fields


def parse_state(value: str) -> ServiceState:
    """
    Convert a `STATE` field (e.g. ``4  RUNNING``) into a `ServiceState`.
    """
    try:
        code = int(value.split()[0])
    except (IndexError, ValueError):
        return ServiceState.unknown
    return _STATE_CODES.get(code, ServiceState.unknown)


def parse_pid(value: Optional[str]) -> Optional[int]:
    """
    Convert a `PID` field into a process ID, treating 0 (no process) as missing.
    """
    try:
        pid = int(value or "")
    except ValueError:
        return None
    return pid or None


class ServiceControlManager:
    """
    `ServiceControl` implementation backed by ``sc.exe``.
    """

    def _sc(self, host: str, *args: str,
            check: bool = True) -> "subprocess.CompletedProcess[bytes]":
        argv: List[str] = [SC]
        if not is_local(host):
            argv.append("\\\\{}".format(host))
        argv.extend(args)
        try:
            proc = command(argv, output=True, check=False)
        except OSError as ex:
            raise ControlError("Couldn't run {}: {}".format(SC, ex)) from ex
        if check and proc.returncode:
            raise ControlError("{} {} failed with code {}: {}"
                               .format(SC, " ".join(args), proc.returncode,
                                       _decode(proc.stdout).strip()))
        return proc

    def _queryex(self, name: str, host: str) -> Optional[Dict[str, str]]:
        proc = self._sc(host, "queryex", name, check=False)
        if proc.returncode == ERROR_SERVICE_DOES_NOT_EXIST:
            return None
        elif proc.returncode:
            raise ControlError("Couldn't query {!r} on {}: code {}: {}"
                               .format(name, host, proc.returncode, _decode(proc.stdout).strip()))
        return parse_queryex(_decode(proc.stdout))

    def _lookup(self, host: str, verb: str, name: str) -> Optional[str]:
        proc = self._sc(host, verb, name, check=False)
        if proc.returncode:
            return None
        match = _NAME.search(_decode(proc.stdout))
        return match.group(1) if match else None

    def query(self, name: str, host: str) -> Optional[ServiceDescriptor]:
        fields = self._queryex(name, host)
        if fields is None:
            # Not a service key name, try it as a display name instead.
            key = self._lookup(host, "getkeyname", name)
            if not key:
                return None
            fields = self._queryex(key, host)
            if fields is None:
                return None
        identity = fields.get("SERVICE_NAME", name)
        display_name = self._lookup(host, "getdisplayname", identity) or identity
        state = parse_state(fields.get("STATE", ""))
        return ServiceDescriptor(identity, display_name, host, state)

    def start(self, service: ServiceDescriptor) -> None:
        self._sc(service.host, "start", service.identity)

    def stop(self, service: ServiceDescriptor) -> None:
        self._sc(service.host, "stop", service.identity)

    def pause(self, service: ServiceDescriptor) -> None:
        self._sc(service.host, "pause", service.identity)

    def resume(self, service: ServiceDescriptor) -> None:
        self._sc(service.host, "continue", service.identity)

    def process_id(self, name: str, host: str) -> Optional[int]:
        try:
            fields = self._queryex(name, host)
        except ControlError as ex:
            LOG.warning("Couldn't look up process of %r on %s: %s", name, host, ex)
            return None
        return parse_pid(fields.get("PID")) if fields else None


class TaskManager:
    """
    `ProcessControl` implementation backed by ``taskkill.exe`` and ``tasklist.exe``.
    """

    def _remote(self, host: str) -> List[str]:
        return [] if is_local(host) else ["/S", host]

    def terminate(self, pid: int, host: str) -> None:
        argv = [TASKKILL, *self._remote(host), "/PID", str(pid), "/F"]
        try:
            command(argv, output=True)
        except subprocess.CalledProcessError as ex:
            raise TerminationError("Couldn't terminate process {} on {}: {}"
                                   .format(pid, host, _decode(ex.stdout).strip())) from ex
        except OSError as ex:
            raise TerminationError("Couldn't run {}: {}".format(TASKKILL, ex)) from ex

    def exists(self, pid: int, host: str) -> bool:
        argv = [TASKLIST, *self._remote(host), "/FI", "PID eq {}".format(pid), "/NH", "/FO", "CSV"]
        try:
            proc = command(argv, output=True)
        except (subprocess.CalledProcessError, OSError) as ex:
            # Can't tell either way, assume it's still around so we keep waiting.
            LOG.debug("Couldn't list process %d on %s: %s", pid, host, ex)
            return True
        return '"{}"'.format(pid) in _decode(proc.stdout)
