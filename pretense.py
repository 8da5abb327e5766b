#!/usr/bin/env python3
"""
pretense.py

Decoy TCP listener: binds a set of ports, accepts every connection, counts it,
and drops it without reading or writing a single byte.

Key behavior:
- One accept loop per configured port, all on a single asyncio loop.
- Every accepted connection is logged (local port, remote ip, remote port),
  counted per local port, and closed immediately.
- Optional HTTP endpoint (GET /metrics) renders the per-port counters in the
  Prometheus text exposition format:

        pretense_connection{port="8001"} 3.0

Failure policy ("all ports up, or shut down"):
- The supervisor races every listener task plus the metrics task.
- None of them is expected to ever finish. The first one that does (bind
  failure, accept failure, metrics server death) takes the whole process down
  with a non-zero exit status. Other tasks are cancelled, never drained.

Configuration (lowest to highest precedence):
- --config FILE (JSON or json-ish: unquoted keys, comments, trailing commas)
- PRETENSE_PORTS, PRETENSE_METRICS_PORT, PRETENSE_LOG, PRETENSE_LOG_FORMAT
- --ports, --metrics-port, --bind-ip, --log-level, --log-format

Usage:
  PRETENSE_PORTS=22,23,3389 python3 pretense.py
  python3 pretense.py --ports 8001,8002 --metrics-port 9100
  python3 pretense.py --config pretense.example.json --log-format json
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import re
import signal
import socket
import threading
import time
from dataclasses import dataclass
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any, Dict, Iterable, List, Mapping, NoReturn, Optional, Tuple
from urllib.parse import urlparse

from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, generate_latest
from prometheus_client.metrics_core import Metric


DEFAULT_BIND_IP = "0.0.0.0"
DEFAULT_BACKLOG = 128
METRICS_PATH = "/metrics"

EXIT_FAILURE = 1
EXIT_CONFIG = 2

ENV_PORTS = "PRETENSE_PORTS"
ENV_METRICS_PORT = "PRETENSE_METRICS_PORT"
ENV_LOG = "PRETENSE_LOG"
ENV_LOG_FORMAT = "PRETENSE_LOG_FORMAT"

LOG_FORMATS = ("text", "json")


# =============================================================================
# Errors
# =============================================================================

class PretenseError(Exception):
    """Base class for every fatal condition."""


class ConfigError(PretenseError):
    pass


class BindError(PretenseError):
    def __init__(self, port: int, cause: BaseException) -> None:
        super().__init__(f"cannot bind port {port}: {cause}")
        self.port = port
        self.cause = cause


class AcceptError(PretenseError):
    def __init__(self, port: int, cause: BaseException) -> None:
        super().__init__(f"accept failed on port {port}: {cause}")
        self.port = port
        self.cause = cause


class MetricsServerStopped(PretenseError):
    def __init__(self, port: int) -> None:
        super().__init__(f"metrics server on port {port} stopped serving")
        self.port = port


class TaskFailed(PretenseError):
    """First completion observed by the supervisor. Always fatal."""

    def __init__(self, task_name: str, port: Optional[int], error: BaseException) -> None:
        super().__init__(f"{task_name} failed: {error}")
        self.task_name = task_name
        self.port = port
        self.error = error


# =============================================================================
# Small utilities
# =============================================================================

def utc_iso(ts: Optional[float] = None) -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(ts))


def clamp_int(v: Any, default: int, lo: int, hi: int) -> int:
    try:
        iv = int(v)
    except Exception:
        return default
    if iv < lo:
        return lo
    if iv > hi:
        return hi
    return iv


def get_path(d: Dict[str, Any], path: str, default: Any = None) -> Any:
    cur: Any = d
    for part in path.split("."):
        if not isinstance(cur, dict):
            return default
        if part not in cur:
            return default
        cur = cur[part]
    return cur


def parse_level(s: Any, default: int) -> int:
    if not s:
        return default
    name = str(s).strip().upper()
    level = getattr(logging, name, default)
    return level if isinstance(level, int) else default


def _env_str(env: Mapping[str, str], name: str) -> str:
    return str(env.get(name, "") or "").strip()


# =============================================================================
# “json-ish” loader (unquoted keys, comments, trailing commas)
# =============================================================================

_KEY_RE = re.compile(r'(?m)(^|\s|[{,])([A-Za-z_][A-Za-z0-9_-]*)(\s*):')
_TRAILING_COMMA_RE = re.compile(r",(\s*[}\]])")
_LINE_COMMENT_RE = re.compile(r"(?m)^\s*(//|#).*$")
_BLOCK_COMMENT_RE = re.compile(r"/\*.*?\*/", re.DOTALL)


def _jsonish_to_json(text: str) -> str:
    text = _BLOCK_COMMENT_RE.sub("", text)
    text = _LINE_COMMENT_RE.sub("", text)

    def _repl(m: re.Match) -> str:
        prefix, key, suffix = m.group(1), m.group(2), m.group(3)
        return f'{prefix}"{key}"{suffix}:'

    text = _KEY_RE.sub(_repl, text)
    text = _TRAILING_COMMA_RE.sub(r"\1", text)
    return text


def load_config(path: str) -> Dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = f.read()
    except OSError as e:
        raise ConfigError(f"cannot read config {path}: {e}") from e

    try:
        cfg = json.loads(raw)
    except ValueError:
        norm = _jsonish_to_json(raw)
        try:
            cfg = json.loads(norm)
        except ValueError as e:
            raise ConfigError(f"config parse error for {path}: {e}") from e

    if not isinstance(cfg, dict):
        raise ConfigError(f"config root must be an object: {path}")
    return cfg


# =============================================================================
# Settings
# =============================================================================

@dataclass(frozen=True)
class Settings:
    ports: Tuple[int, ...]
    metrics_port: Optional[int] = None
    bind_ip: str = DEFAULT_BIND_IP
    metrics_bind_ip: str = DEFAULT_BIND_IP
    backlog: int = DEFAULT_BACKLOG
    log_level: int = logging.INFO
    log_format: str = "text"
    log_file: Optional[str] = None
    log_file_level: int = logging.INFO


def parse_port(value: Any, source: str) -> int:
    if isinstance(value, bool):
        raise ConfigError(f"{source}: invalid port number {value!r}")
    try:
        port = int(str(value).strip())
    except ValueError as e:
        raise ConfigError(f"{source}: invalid port number {value!r}") from e
    if not 0 <= port <= 65535:
        raise ConfigError(f"{source}: port {port} out of range 0-65535")
    return port


def parse_ports(raw: Any, source: str) -> Tuple[int, ...]:
    """
    Accepts a comma separated string ("22, 80,443") or a list of ints/strings.
    Empty items are rejected, not skipped.
    """
    if isinstance(raw, str):
        items: List[Any] = raw.split(",")
    elif isinstance(raw, (list, tuple)):
        items = list(raw)
    else:
        raise ConfigError(f"{source} must be a comma separated list of ports")

    if not items or (len(items) == 1 and str(items[0]).strip() == ""):
        raise ConfigError(f"{source} must be a comma separated list of ports")

    ports: List[int] = []
    for item in items:
        if str(item).strip() == "":
            raise ConfigError(f"{source} contains an empty entry, must be a comma separated list of ports")
        ports.append(parse_port(item, source))
    return tuple(ports)


def validate_ports(ports: Iterable[int], metrics_port: Optional[int]) -> None:
    ports = list(ports)
    if not ports:
        raise ConfigError(f"no ports configured, set {ENV_PORTS} to a comma separated list of ports")

    for port in ports:
        if isinstance(port, bool) or not isinstance(port, int) or not 0 <= port <= 65535:
            raise ConfigError(f"invalid port number {port!r}")

    seen = set()
    dups = set()
    for port in ports:
        if port in seen:
            dups.add(port)
        seen.add(port)
    if dups:
        raise ConfigError(f"duplicate ports configured: {sorted(dups)}")

    if metrics_port is not None and metrics_port in seen:
        raise ConfigError(f"{ENV_PORTS} overlaps with {ENV_METRICS_PORT} (port {metrics_port})")


def load_settings(args: argparse.Namespace, environ: Optional[Mapping[str, str]] = None) -> Settings:
    env = os.environ if environ is None else environ
    cfg = load_config(args.config) if getattr(args, "config", None) else {}

    listen = get_path(cfg, "listen", {}) or {}
    metrics = get_path(cfg, "metrics", {}) or {}
    console = get_path(cfg, "logging.console", {}) or {}
    file_cfg = get_path(cfg, "logging.file", {}) or {}

    if args.ports:
        ports = parse_ports(args.ports, "--ports")
    elif _env_str(env, ENV_PORTS):
        ports = parse_ports(_env_str(env, ENV_PORTS), ENV_PORTS)
    elif listen.get("ports") is not None:
        ports = parse_ports(listen.get("ports"), "listen.ports")
    else:
        raise ConfigError(f"environment variable {ENV_PORTS} must be set to comma separated list of ports")

    metrics_port: Optional[int] = None
    if args.metrics_port not in (None, ""):
        metrics_port = parse_port(args.metrics_port, "--metrics-port")
    elif _env_str(env, ENV_METRICS_PORT):
        metrics_port = parse_port(_env_str(env, ENV_METRICS_PORT), ENV_METRICS_PORT)
    elif metrics.get("port") is not None:
        metrics_port = parse_port(metrics.get("port"), "metrics.port")

    validate_ports(ports, metrics_port)

    log_level = parse_level(console.get("verbosity"), logging.INFO)
    log_level = parse_level(_env_str(env, ENV_LOG), log_level)
    log_level = parse_level(args.log_level, log_level)

    log_format = str(args.log_format or _env_str(env, ENV_LOG_FORMAT) or console.get("format") or "text").strip().lower()
    if log_format not in LOG_FORMATS:
        raise ConfigError(f"log format must be one of {'/'.join(LOG_FORMATS)}, got {log_format!r}")

    log_file: Optional[str] = None
    if bool(file_cfg.get("enabled", False)):
        log_file = str(file_cfg.get("path", "pretense.log"))

    return Settings(
        ports=ports,
        metrics_port=metrics_port,
        bind_ip=str(args.bind_ip or listen.get("bind_ip") or DEFAULT_BIND_IP),
        metrics_bind_ip=str(metrics.get("bind_ip") or DEFAULT_BIND_IP),
        backlog=clamp_int(listen.get("backlog", DEFAULT_BACKLOG), default=DEFAULT_BACKLOG, lo=1, hi=65535),
        log_level=log_level,
        log_format=log_format,
        log_file=log_file,
        log_file_level=parse_level(file_cfg.get("verbosity"), logging.INFO),
    )


# =============================================================================
# Logging
# =============================================================================

class JsonFormatter(logging.Formatter):
    """One JSON object per line; event payload fields are flattened in."""

    def format(self, record: logging.LogRecord) -> str:
        out: Dict[str, Any] = {
            "ts": utc_iso(record.created),
            "level": record.levelname.lower(),
            "logger": record.name,
        }
        event = getattr(record, "event", None)
        payload = getattr(record, "payload", None)
        if event:
            out["event"] = event
            if isinstance(payload, dict):
                out.update(payload)
        else:
            out["message"] = record.getMessage()
        if record.exc_info:
            out["exc"] = self.formatException(record.exc_info)
        return json.dumps(out, separators=(",", ":"), ensure_ascii=False, default=str)


def _formatter(kind: str) -> logging.Formatter:
    if kind == "json":
        return JsonFormatter()
    return logging.Formatter("%(asctime)s %(levelname)s %(message)s")


def log_event(log: logging.Logger, level: str, event: str, payload: Dict[str, Any]) -> None:
    log.log(
        parse_level(level, logging.INFO),
        "%s %s",
        event,
        payload,
        extra={"event": event, "payload": payload},
    )


def setup_logging(settings: Optional[Settings] = None) -> logging.Logger:
    log = logging.getLogger("pretense")
    log.propagate = False
    log.handlers.clear()
    log.setLevel(logging.DEBUG)  # handlers gate output

    if settings is None:
        level = parse_level(os.environ.get(ENV_LOG), logging.INFO)
        kind = _env_str(os.environ, ENV_LOG_FORMAT).lower()
    else:
        level = settings.log_level
        kind = settings.log_format

    ch = logging.StreamHandler()
    ch.setLevel(level)
    ch.setFormatter(_formatter(kind))
    log.addHandler(ch)

    if settings is not None and settings.log_file:
        fh = logging.FileHandler(settings.log_file, encoding="utf-8")
        fh.setLevel(settings.log_file_level)
        fh.setFormatter(_formatter(settings.log_format))
        log.addHandler(fh)

    return log


# =============================================================================
# Connection counters
# =============================================================================

class ConnectionCounters:
    """
    Per-port connection counts, exported through a dedicated CollectorRegistry.

    increment() may be called from any thread. render() copies the counts under
    the lock and formats them outside it, so a scrape never holds up writers.
    """

    METRIC_NAME = "pretense_connection"
    METRIC_HELP = "Connections accepted per decoy port"

    def __init__(self, registry: Optional[CollectorRegistry] = None) -> None:
        self._lock = threading.Lock()
        self._counts: Dict[int, int] = {}
        self.registry = registry if registry is not None else CollectorRegistry()
        self.registry.register(self)

    def increment(self, port: int) -> None:
        with self._lock:
            self._counts[port] = self._counts.get(port, 0) + 1

    def get(self, port: int) -> int:
        with self._lock:
            return self._counts.get(port, 0)

    def snapshot(self) -> Dict[int, int]:
        with self._lock:
            return dict(self._counts)

    def collect(self) -> Iterable[Metric]:
        metric = Metric(self.METRIC_NAME, self.METRIC_HELP, "unknown")
        for port, value in sorted(self.snapshot().items()):
            metric.add_sample(self.METRIC_NAME, {"port": str(port)}, value)
        yield metric

    def render(self) -> str:
        return generate_latest(self.registry).decode("utf-8")


# =============================================================================
# Port listener
# =============================================================================

@dataclass(frozen=True)
class ConnectionEvent:
    local_port: int
    remote_ip: str
    remote_port: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "local_port": self.local_port,
            "remote_ip": self.remote_ip,
            "remote_port": self.remote_port,
        }


class PortListener:
    """
    Unbound -> Bound -> Accepting -> Failed.

    There is no way out of Accepting other than an error (or cancellation by
    the supervisor). Accept errors are not retried.
    """

    def __init__(
        self,
        *,
        port: int,
        counters: ConnectionCounters,
        log: logging.Logger,
        bind_ip: str = DEFAULT_BIND_IP,
        backlog: int = DEFAULT_BACKLOG,
    ) -> None:
        self.port = port
        self.counters = counters
        self.log = log
        self.bind_ip = bind_ip
        self.backlog = backlog
        self.local_port: Optional[int] = None
        self.bound = asyncio.Event()

    def bind(self) -> socket.socket:
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind((self.bind_ip, self.port))
            sock.listen(self.backlog)
            sock.setblocking(False)
        except OSError as e:
            sock.close()
            raise BindError(self.port, e) from e

        self.local_port = sock.getsockname()[1]
        self.bound.set()
        return sock

    async def _accept(self, sock: socket.socket) -> Tuple[socket.socket, Any]:
        return await asyncio.get_running_loop().sock_accept(sock)

    def _drop(self, conn: socket.socket, addr: Any) -> None:
        with conn:
            ev = ConnectionEvent(
                local_port=self.local_port if self.local_port is not None else self.port,
                remote_ip=str(addr[0]),
                remote_port=int(addr[1]),
            )
            log_event(self.log, "info", "connection.received", ev.to_dict())
            self.counters.increment(ev.local_port)

    async def run(self) -> NoReturn:
        sock = self.bind()
        log_event(self.log, "info", "listener.started", {"addr": f"{self.bind_ip}:{self.local_port}", "port": self.local_port})
        try:
            while True:
                try:
                    conn, addr = await self._accept(sock)
                except OSError as e:
                    raise AcceptError(self.local_port or self.port, e) from e
                self._drop(conn, addr)
        finally:
            sock.close()


# =============================================================================
# Metrics server
# =============================================================================

class MetricsHTTPServer(ThreadingHTTPServer):
    daemon_threads = True
    counters: ConnectionCounters
    log: logging.Logger


class MetricsHandler(BaseHTTPRequestHandler):
    server: MetricsHTTPServer

    def log_message(self, fmt: str, *args) -> None:
        self.server.log.debug("metrics.request %s", fmt % args)

    def _send_bytes(self, code: int, body: bytes, content_type: str) -> None:
        self.send_response(code)
        self.send_header("Content-Type", content_type)
        self.send_header("Cache-Control", "no-store, max-age=0")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def do_GET(self) -> None:
        parsed = urlparse(self.path)
        if parsed.path == METRICS_PATH:
            body = self.server.counters.render().encode("utf-8")
            self._send_bytes(200, body, CONTENT_TYPE_LATEST)
            return
        self._send_bytes(404, b"not found\n", "text/plain; charset=utf-8")


class MetricsServer:
    def __init__(
        self,
        *,
        port: int,
        counters: ConnectionCounters,
        log: logging.Logger,
        bind_ip: str = DEFAULT_BIND_IP,
    ) -> None:
        self.port = port
        self.counters = counters
        self.log = log
        self.bind_ip = bind_ip
        self.bound = asyncio.Event()

    def bind(self) -> MetricsHTTPServer:
        try:
            httpd = MetricsHTTPServer((self.bind_ip, self.port), MetricsHandler)
        except OSError as e:
            raise BindError(self.port, e) from e
        httpd.counters = self.counters
        httpd.log = self.log
        self.bound.set()
        return httpd

    async def run(self) -> NoReturn:
        httpd = self.bind()
        loop = asyncio.get_running_loop()
        stopped: asyncio.Future = loop.create_future()

        def _settle(exc: Optional[BaseException]) -> None:
            if stopped.done():
                return
            if exc is None:
                stopped.set_result(None)
            else:
                stopped.set_exception(exc)

        def _report(exc: Optional[BaseException]) -> None:
            try:
                loop.call_soon_threadsafe(_settle, exc)
            except RuntimeError:
                pass  # loop already closed, nobody is waiting

        def _serve() -> None:
            try:
                httpd.serve_forever(poll_interval=0.5)
            except Exception as e:
                _report(e)
            else:
                _report(None)

        def _shutdown() -> None:
            httpd.shutdown()
            httpd.server_close()

        threading.Thread(target=_serve, name=f"metrics:{self.port}", daemon=True).start()
        log_event(self.log, "info", "metrics.started", {"addr": f"{self.bind_ip}:{self.port}", "path": METRICS_PATH})

        try:
            await stopped
        except asyncio.CancelledError:
            # serve_forever is still running; stop it off the loop
            threading.Thread(target=_shutdown, name=f"metrics:{self.port}:shutdown", daemon=True).start()
            raise
        except Exception:
            httpd.server_close()
            raise
        httpd.server_close()
        raise MetricsServerStopped(self.port)


async def idle_forever() -> NoReturn:
    """Stands in for the metrics task when metrics are disabled."""
    await asyncio.get_running_loop().create_future()
    raise PretenseError("idle placeholder completed")


# =============================================================================
# Supervisor
# =============================================================================

class Supervisor:
    """
    Races every listener and the metrics task. The first one to finish, for
    whatever reason, ends the run with TaskFailed.
    """

    def __init__(self, settings: Settings, log: logging.Logger, counters: Optional[ConnectionCounters] = None) -> None:
        validate_ports(settings.ports, settings.metrics_port)

        self.settings = settings
        self.log = log
        self.counters = counters if counters is not None else ConnectionCounters()

        self.listeners = [
            PortListener(
                port=port,
                counters=self.counters,
                log=log,
                bind_ip=settings.bind_ip,
                backlog=settings.backlog,
            )
            for port in settings.ports
        ]
        self.metrics: Optional[MetricsServer] = None
        if settings.metrics_port is not None:
            self.metrics = MetricsServer(
                port=settings.metrics_port,
                counters=self.counters,
                log=log,
                bind_ip=settings.metrics_bind_ip,
            )

        self.tasks: Dict[str, asyncio.Task] = {}
        self._task_ports: Dict[str, Optional[int]] = {}

    async def wait_bound(self) -> None:
        events = [lst.bound for lst in self.listeners]
        if self.metrics is not None:
            events.append(self.metrics.bound)
        await asyncio.gather(*(ev.wait() for ev in events))

    def _spawn(self) -> List[asyncio.Task]:
        for lst in self.listeners:
            name = f"listener:{lst.port}"
            self.tasks[name] = asyncio.create_task(lst.run(), name=name)
            self._task_ports[name] = lst.port

        if self.metrics is not None:
            name = f"metrics:{self.metrics.port}"
            self.tasks[name] = asyncio.create_task(self.metrics.run(), name=name)
            self._task_ports[name] = self.metrics.port
        else:
            name = "metrics:disabled"
            self.tasks[name] = asyncio.create_task(idle_forever(), name=name)
            self._task_ports[name] = None

        return list(self.tasks.values())

    async def _announce_ready(self) -> None:
        await self.wait_bound()
        log_event(self.log, "info", "supervisor.ready", {
            "ports": [lst.local_port for lst in self.listeners],
            "metrics_port": self.settings.metrics_port,
        })

    async def run(self) -> NoReturn:
        log_event(self.log, "info", "supervisor.starting", {
            "ports": list(self.settings.ports),
            "metrics_port": self.settings.metrics_port,
        })

        tasks = self._spawn()
        ready = asyncio.create_task(self._announce_ready(), name="supervisor:ready")
        try:
            done, _pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        finally:
            # abandon the rest: cancel, never wait for them
            ready.cancel()
            for t in tasks:
                t.cancel()

        first = next(t for t in tasks if t in done)
        name = first.get_name()
        port = self._task_ports.get(name)

        if first.cancelled():
            err: BaseException = PretenseError(f"task {name} was cancelled")
        else:
            err = first.exception() or PretenseError(f"task {name} exited")

        log_event(self.log, "error", "supervisor.task_failed", {"task": name, "port": port, "error": str(err)})
        raise TaskFailed(name, port, err) from err


# =============================================================================
# CLI + entrypoint
# =============================================================================

def build_argparser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Decoy TCP listener: accept, count and drop connections on a set of ports")
    p.add_argument("--config", default=None, help="Path to JSON (or json-ish) config file")
    p.add_argument("--ports", default=None, help=f"Comma separated list of ports (overrides {ENV_PORTS})")
    p.add_argument("--metrics-port", default=None, help=f"Port for GET {METRICS_PATH} (overrides {ENV_METRICS_PORT})")
    p.add_argument("--bind-ip", default=None, help=f"Address for decoy ports (default: {DEFAULT_BIND_IP})")
    p.add_argument("--log-level", default=None, help=f"Console log level (overrides {ENV_LOG})")
    p.add_argument("--log-format", choices=LOG_FORMATS, default=None, help=f"Console log format (overrides {ENV_LOG_FORMAT})")
    return p


async def amain(settings: Settings, log: logging.Logger) -> int:
    sup = Supervisor(settings, log)

    stop_ev = asyncio.Event()

    def _stop(*_a) -> None:
        stop_ev.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _stop)
        except NotImplementedError:
            pass

    sup_task = asyncio.create_task(sup.run(), name="supervisor")
    stop_task = asyncio.create_task(stop_ev.wait(), name="signals")
    await asyncio.wait({sup_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)

    if sup_task.done():
        stop_task.cancel()
        sup_task.result()  # always raises TaskFailed

    log_event(log, "info", "supervisor.stopping", {"reason": "signal"})
    sup_task.cancel()
    await asyncio.gather(sup_task, return_exceptions=True)
    return 0


def main(argv: Optional[List[str]] = None) -> None:
    args = build_argparser().parse_args(argv)

    try:
        settings = load_settings(args)
    except ConfigError as e:
        log = setup_logging(None)
        log_event(log, "error", "config.invalid", {"error": str(e)})
        raise SystemExit(EXIT_CONFIG)

    log = setup_logging(settings)
    try:
        rc = asyncio.run(amain(settings, log))
    except ConfigError as e:
        log_event(log, "error", "config.invalid", {"error": str(e)})
        rc = EXIT_CONFIG
    except TaskFailed:
        # already logged by the supervisor
        rc = EXIT_FAILURE
    except KeyboardInterrupt:
        rc = 130
    raise SystemExit(rc)


if __name__ == "__main__":
    main()
