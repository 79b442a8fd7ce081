"""Isolated worker that runs one operator script.

Started by ``SandboxedCodeRunner`` as ``python -I -S sandbox_worker.py`` with
an empty environment. It must only depend on the standard library, because it
runs outside the service's import path.

Protocol (JSON lines):

* host -> worker, first line: ``{"script", "context", "limits"}``
* worker -> host: ``{"op": "log", "level", "message"}``
* worker -> host: ``{"op": "fetch", "id", "method", "url", "headers", "params",
  "json", "data"}``, answered by host -> worker ``{"op": "response", "id",
  "status", "headers", "text", "url"}`` or ``{"op": "fetch_error", "id",
  "message"}``
* worker -> host, last line: ``{"op": "result", "evidence": [...]}`` or
  ``{"op": "error", "message"}``

Once the script starts, an audit hook refuses file access, sockets, process
creation and new imports, so the only way out of the process is ``fetch``,
which the host performs on the script's behalf.
"""

import _strptime  # noqa: F401  preloaded: datetime.strptime imports it lazily
import datetime as _datetime
import json as _json
import math
import os
import re as _re
import sys
import types

SCRIPT_FILENAME = "<integration-script>"

BLOCKED_EVENTS = (
    "open",
    "import",
    "compile",
    "socket.",
    "subprocess.",
    "os.system",
    "os.exec",
    "os.spawn",
    "os.posix_spawn",
    "os.fork",
    "os.forkpty",
    "os.kill",
    "os.killpg",
    "os.remove",
    "os.rename",
    "os.rmdir",
    "os.mkdir",
    "os.chdir",
    "os.chmod",
    "os.chown",
    "os.listdir",
    "os.scandir",
    "os.putenv",
    "os.unsetenv",
    "os.truncate",
    "os.link",
    "os.symlink",
    "os.startfile",
    "shutil.",
    "ctypes.",
    "mmap.",
    "marshal.",
    "pickle.",
    "sys._getframe",
    "sys.settrace",
    "sys.setprofile",
    "sys._current_frames",
    "code.__new__",
    "function.__new__",
    "object.__setattr__",
    "object.__delattr__",
    "resource.setrlimit",
    "gc.get_referrers",
    "gc.get_referents",
    "gc.get_objects",
    "object.__getattr__",
)


class FetchError(Exception):
    """Raised inside the script when the host could not perform a fetch."""
    pass


class Channel:
    def __init__(self, reader, writer):
        self.reader = reader
        self.writer = writer
        self.next_id = 0

    def send(self, message):
        self.writer.write(_json.dumps(message, default=str) + "\n")
        self.writer.flush()

    def request(self, message):
        self.next_id += 1
        message["id"] = self.next_id
        self.send(message)
        line = self.reader.readline()
        if not line:
            raise FetchError("host closed the channel")
        reply = _json.loads(line)
        if reply.get("id") != self.next_id:
            raise FetchError("out-of-order reply from host")
        return reply


class Response:
    """Result of ``context.fetch``."""

    def __init__(self, status, headers, text, url):
        self.status = status
        self.status_code = status
        self.headers = headers
        self.text = text
        self.url = url

    @property
    def ok(self):
        return 200 <= self.status < 300

    def json(self):
        return _json.loads(self.text)

    def raise_for_status(self):
        if not self.ok:
            raise FetchError(f"HTTP {self.status} for {self.url}")
        return self


class ScriptLogger:
    def __init__(self, channel):
        self._channel = channel

    def _emit(self, level, args):
        self._channel.send({"op": "log", "level": level, "message": " ".join(str(a) for a in args)})

    def debug(self, *args):
        self._emit("debug", args)

    def info(self, *args):
        self._emit("info", args)

    def log(self, *args):
        self._emit("info", args)

    def warning(self, *args):
        self._emit("warning", args)

    warn = warning

    def error(self, *args):
        self._emit("error", args)


class Auth:
    def __init__(self, headers, params):
        self.headers = headers
        self.params = params


class Context:
    """The only capabilities a script receives."""

    def __init__(self, channel, data):
        self._channel = channel
        self.base_url = data.get("base_url") or ""
        self.auth_headers = dict(data.get("auth_headers") or {})
        self.auth_params = dict(data.get("auth_params") or {})
        self.auth = Auth(self.auth_headers, self.auth_params)
        self.organization_id = data.get("organization_id")
        self.integration_id = data.get("integration_id")
        self.log = ScriptLogger(channel)

    def fetch(self, url, method="GET", headers=None, params=None, json=None, data=None, options=None):
        """Perform an HTTP request through the host.

        ``options`` accepts a fetch-style mapping with ``method``, ``headers``
        and ``body`` keys.
        """
        if options:
            method = options.get("method", method)
            headers = options.get("headers", headers)
            body = options.get("body")
            if isinstance(body, (dict, list)):
                json = body
            elif body is not None:
                data = body

        if url.startswith("/"):
            url = self.base_url.rstrip("/") + url

        reply = self._channel.request({
            "op": "fetch",
            "method": str(method).upper(),
            "url": url,
            "headers": dict(headers or {}),
            "params": dict(params or {}),
            "json": json,
            "data": data,
        })
        if reply.get("op") == "fetch_error":
            raise FetchError(reply.get("message") or "fetch failed")
        return Response(reply.get("status", 0), reply.get("headers") or {}, reply.get("text") or "", reply.get("url") or url)


def _safe_builtins(logger):
    import builtins

    allowed = (
        "abs", "all", "any", "bin", "bool", "callable", "chr", "dict", "divmod",
        "enumerate", "filter", "float", "format", "frozenset", "hash", "hex",
        "int", "isinstance", "issubclass", "iter", "len", "list", "map", "max",
        "min", "next", "oct", "ord", "pow", "range", "repr", "reversed", "round",
        "set", "slice", "sorted", "str", "sum", "tuple", "zip", "__build_class__",
        "ArithmeticError", "AssertionError", "AttributeError", "Exception",
        "IndexError", "KeyError", "LookupError", "NotImplementedError",
        "PermissionError", "RuntimeError", "StopIteration", "TypeError",
        "ValueError", "ZeroDivisionError",
    )
    safe = {name: getattr(builtins, name) for name in allowed}
    safe["print"] = logger.info
    return safe


def _script_globals(context):
    return {
        "__builtins__": _safe_builtins(context.log),
        "__name__": "integration_script",
        "FetchError": FetchError,
        "json": types.SimpleNamespace(loads=_json.loads, dumps=_json.dumps),
        "math": math,
        "re": types.SimpleNamespace(
            compile=_re.compile,
            search=_re.search,
            match=_re.match,
            fullmatch=_re.fullmatch,
            findall=_re.findall,
            finditer=_re.finditer,
            sub=_re.sub,
            split=_re.split,
            escape=_re.escape,
            IGNORECASE=_re.IGNORECASE,
            MULTILINE=_re.MULTILINE,
            DOTALL=_re.DOTALL,
        ),
        "datetime": types.SimpleNamespace(
            datetime=_datetime.datetime,
            date=_datetime.date,
            timedelta=_datetime.timedelta,
            timezone=_datetime.timezone,
        ),
    }


def _apply_limits(limits):
    if os.name != "posix":
        return []
    import resource

    notes = []
    wanted = [
        ("RLIMIT_CPU", limits.get("cpu_seconds")),
        ("RLIMIT_AS", (limits.get("memory_mb") or 0) * 1024 * 1024 or None),
        ("RLIMIT_FSIZE", 0),
        ("RLIMIT_NOFILE", 16),
    ]
    for name, value in wanted:
        if value is None or not hasattr(resource, name):
            continue
        which = getattr(resource, name)
        soft, hard = resource.getrlimit(which)
        if hard != resource.RLIM_INFINITY:
            value = min(value, hard)
        try:
            resource.setrlimit(which, (value, hard if name == "RLIMIT_CPU" else value))
        except (ValueError, OSError) as e:
            notes.append(f"could not apply {name}: {e}")
    return notes


def _install_audit_hook(script_code):
    state = {"exec_allowed": True}

    def hook(event, args):
        if event == "exec":
            if state["exec_allowed"] and args and args[0] is script_code:
                state["exec_allowed"] = False
                return
            raise PermissionError("dynamic code execution is not allowed in integration scripts")
        if event.startswith(BLOCKED_EVENTS):
            raise PermissionError(f"{event} is not allowed in integration scripts")

    sys.addaudithook(hook)


def _drive(result):
    """Finish a coroutine returned by ``async def sync`` without an event loop."""
    if not isinstance(result, types.CoroutineType):
        return result
    try:
        result.send(None)
    except StopIteration as stop:
        return stop.value
    result.close()
    raise RuntimeError("sync() awaited something other than a finished value; context.fetch is synchronous")


def _normalize(result):
    if isinstance(result, list):
        result = {"evidence": result}
    if result is None:
        result = {"evidence": []}
    if not isinstance(result, dict) or not isinstance(result.get("evidence", []), list):
        raise TypeError('sync() must return {"evidence": [...]}')

    items = []
    for index, item in enumerate(result.get("evidence", [])):
        if not isinstance(item, dict):
            raise TypeError(f"evidence[{index}] must be a dict")
        if not item.get("title"):
            raise TypeError(f"evidence[{index}] is missing a title")
        items.append({
            "title": str(item["title"]),
            "description": str(item.get("description") or ""),
            "data": item.get("data"),
            "type": str(item.get("type") or "automated"),
        })
    return items


def main():
    proto_out = sys.stdout
    # Anything the interpreter prints must not corrupt the protocol stream
    sys.stdout = sys.stderr
    channel = Channel(sys.stdin, proto_out)

    try:
        bootstrap = _json.loads(sys.stdin.readline())
    except ValueError as e:
        channel.send({"op": "error", "message": f"invalid bootstrap message: {e}"})
        return 2

    for note in _apply_limits(bootstrap.get("limits") or {}):
        channel.send({"op": "log", "level": "warning", "message": note})

    context = Context(channel, bootstrap.get("context") or {})
    try:
        code = compile(bootstrap["script"], SCRIPT_FILENAME, "exec")
    except SyntaxError as e:
        channel.send({"op": "error", "message": f"SyntaxError: {e.msg} (line {e.lineno})"})
        return 1

    namespace = _script_globals(context)
    _install_audit_hook(code)

    try:
        exec(code, namespace)
        sync = namespace.get("sync")
        if not callable(sync):
            raise RuntimeError("No sync function found")
        items = _normalize(_drive(sync(context)))
        payload = _json.dumps({"op": "result", "evidence": items}, default=str)
    except BaseException as e:  # report everything the script raises, including SystemExit
        channel.send({"op": "error", "message": f"{type(e).__name__}: {e}"})
        return 1

    proto_out.write(payload + "\n")
    proto_out.flush()
    return 0


if __name__ == "__main__":
    sys.exit(main())
