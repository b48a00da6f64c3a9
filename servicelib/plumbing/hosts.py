"""
Host name resolution for service control targets.
"""

import logging
import socket
from typing import NewType, Optional

from .common import local_host


LOG = logging.getLogger(__name__)

Host = NewType("Host", str)
"""
A host name that has been through `resolve`.
"""

LOCAL_ALIASES = ("", ".", "localhost")
"""
Host names that always refer to the machine we're running on.
"""


def resolve(host: Optional[str] = None) -> Host:
    """
    Turn a user-supplied host name into the identifier used to reach its service control manager.

    Missing and local aliases resolve to the local machine name.  Other names are canonicalised via
    DNS where possible, and passed through unchanged otherwise -- an unreachable host is reported
    later as a missing service, not as an error here.
    """
    if host is None or host.strip().lower() in LOCAL_ALIASES:
        return Host(local_host())
    host = host.strip()
    try:
        canonical = socket.getfqdn(host)
    except OSError as ex:
        LOG.debug("Couldn't canonicalise host %r: %s", host, ex)
        return Host(host)
    if not canonical or canonical == host:
        return Host(host)
    # Only keep the short name, as that's what the control tools expect for remote targets.
    return Host(canonical.split(".", 1)[0])


def is_local(host: str) -> bool:
    """
    Test whether a resolved host name refers to the local machine.
    """
    return host.lower() == local_host().lower()
