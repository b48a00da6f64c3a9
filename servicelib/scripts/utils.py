"""
Helpers for converting methods into scripts, and filling in arguments from the command line.
"""

from functools import wraps
from inspect import cleandoc, signature
import logging
import os
import sys
from typing import Any, Callable, Dict, List, Optional, Union

from docopt import docopt

from .. import transcript
from ..plumbing.hosts import Host, resolve
from ..plumbing.windows import ServiceControlManager, TaskManager
from ..tasks.actions import Action, ServiceActionEngine, ValidationError


DocOptArgs = Dict[str, Union[bool, str, List[str]]]

NoneType = type(None)

LOG_DIR_ENV = "SERVICELIB_LOG_DIR"
"""
Environment variable holding the default transcript directory, overridden by ``--log-dir``.
"""


ENTRYPOINTS: List[str] = []


def default_engine() -> ServiceActionEngine:
    """
    Create an engine talking to the Windows service control manager.
    """
    return ServiceActionEngine(ServiceControlManager(), TaskManager())


def _convert(cls: Any, value: Any) -> Any:
    if cls is Action:
        return Action.parse(value)
    elif cls is Host:
        return resolve(value)
    elif cls is bool:
        return bool(value)
    elif cls in (str, int, float):
        try:
            return cls(value)
        except (TypeError, ValueError):
            raise ValidationError("Expected {}, got {!r}".format(cls.__name__, value)) from None
    else:
        raise RuntimeError("Bad parameter type {!r}".format(cls))


def entrypoint(fn: Callable[..., Any]) -> Callable[..., Any]:
    """
    Decorator to make an entrypoint out of a generic function.

    This uses `docopt` to parse arguments according to the method docstring, and will be formatted
    with `{script}` set to the script name.  At minimum, it should contain `Usage: {script}`.

    Functions may optionally accept arguments, but they must be annotated with a recognised type in
    order to be filled in.  The following types are fixed and always available:

    - `DocOptArgs` (a `dict` of input parameters parsed from the usage line)
    - `ServiceActionEngine` (an engine for the local service control tools)

    Other parameters are looked up by name in the usage line -- either in upper case or surrounded
    by arrow brackets for arguments (e.g. `SERVICE` or `<service>`), or as a long option with
    dashes for underscores (e.g. `--force-kill`).  The values are converted according to their
    annotation: `Action`, `Host` (resolved), `str`, `int`, `float` or `bool`.

    The function's return value is used as the script's exit status.  An example function:

        @entrypoint
        def status(engine: ServiceActionEngine, service: str, host: Host):
            \"""
            Show a service's state.

            Usage: {script} SERVICE [--host=HOST]
            \"""
    """
    label = "servicelib-{}-{}".format(fn.__module__.rsplit(".", 1)[-1],
                                      fn.__qualname__).replace("_", "-")

    @wraps(fn)
    def wrap(opts: Optional[DocOptArgs] = None, engine: Optional[ServiceActionEngine] = None):
        extra: Dict[str, Any] = {}
        script = "{} [--debug] [--log-dir=DIR]".format(label)
        if opts is None:
            doc = cleandoc(fn.__doc__.format(script=script))
            opts = docopt(doc)
        if opts.pop("--debug", False):
            logging.basicConfig(level=logging.DEBUG)
        log_dir = opts.get("--log-dir") or os.getenv(LOG_DIR_ENV)
        # Detect resolvable-typed arguments and fill in their values.
        sig = signature(fn)
        ok = True
        for param in sig.parameters.values():
            name = param.name
            cls = param.annotation
            if cls is DocOptArgs:
                extra[name] = opts
                continue
            elif cls is ServiceActionEngine:
                extra[name] = engine or default_engine()
                continue
            keys = (name.upper(), "<{}>".format(name), "--{}".format(name.replace("_", "-")))
            try:
                value = next(opts[key] for key in keys if key in opts)
            except StopIteration:
                raise RuntimeError("Missing argument {!r}".format(name))
            optional = False
            # Unpick Optional[X] by reading the type object arguments and removing type(None).
            if getattr(cls, "__origin__", None) is Union:
                cls_args = cls.__args__
                if NoneType in cls_args:
                    optional = True
                    # NB. Union[X] for a single type X automatically resolves to X.
                    cls = Union[tuple(arg for arg in cls_args if arg is not NoneType)]
            if value is None and optional:
                extra[name] = None
                continue
            try:
                extra[name] = _convert(cls, value)
            except ValidationError as ex:
                ok = False
                error("{!r} is not valid for parameter {!r}: {}".format(value, name, ex),
                      colour="1")
        if not ok:
            sys.exit(1)
        handler = None
        if log_dir:
            transcript.purge(log_dir)
            handler = transcript.start(log_dir, label.replace("servicelib-", "", 1))
        try:
            return fn(**extra)
        finally:
            if handler:
                transcript.stop(handler)
    wrap.__doc__ = wrap.__doc__.format(script=label)
    # Create a console script line for setup.
    target = "{}:{}".format(fn.__module__, fn.__qualname__)
    ENTRYPOINTS.append("{}={}".format(label, target))
    return wrap


def error(msg: Optional[str] = None, *, exit: Optional[int] = None, colour: Optional[str] = None):
    """
    Print an error message and/or exit.
    """
    if msg:
        colour = colour or ("1" if exit else "3")
        print("\033[9{}m{}\033[0m".format(colour, msg), file=sys.stderr)
    if exit is not None:
        sys.exit(exit)
