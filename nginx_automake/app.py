"""Web application and command-line entry point for the nginx build service."""

from __future__ import annotations

import argparse
import os
import re
from datetime import timedelta
from decimal import Decimal

from flask import Flask, Response, jsonify, request, send_file

from .history import HistoryStore
from .parser import ParseError, parse_nginx_v
from .queue import BuildQueue, BuildRequest, Status, ValidationError
from .registry import Registry, load_registry

__all__ = [
    "get_env",
    "get_env_int",
    "get_env_duration",
    "parse_duration",
    "create_app",
    "main",
]

_BAD_REQUEST = "请求数据格式错误"
_JOB_NOT_FOUND = "任务不存在"

_INT_RE = re.compile(r"[+-]?[0-9]+")
_DURATION_PART_RE = re.compile(r"([0-9]*)(?:\.([0-9]*))?(ns|us|µs|μs|ms|h|m|s)")
_UNIT_NANOSECONDS = {
    "ns": Decimal(1),
    "us": Decimal(1_000),
    "µs": Decimal(1_000),
    "μs": Decimal(1_000),
    "ms": Decimal(1_000_000),
    "s": Decimal(1_000_000_000),
    "m": Decimal(60_000_000_000),
    "h": Decimal(3_600_000_000_000),
}


def get_env(key: str, default: str) -> str:
    """Return the trimmed environment variable *key*, or *default* if blank."""
    value = os.environ.get(key, "").strip()
    return value or default


def get_env_int(key: str, default: int) -> int:
    """Return *key* as an integer, or *default* if it is blank or not a number."""
    value = os.environ.get(key, "").strip()
    if not value or not _INT_RE.fullmatch(value):
        return default
    return int(value)


def parse_duration(text: str) -> timedelta:
    """Parse a duration such as ``90m``, ``1h30m`` or ``1.5s``.

    Valid units are ns, us (or µs), ms, s, m and h; a bare ``0`` is allowed.
    Raises ValueError for anything else.
    """
    rest = text
    negative = False
    if rest[:1] in ("+", "-"):
        negative = rest[0] == "-"
        rest = rest[1:]
    if rest == "0":
        return timedelta(0)
    if not rest:
        raise ValueError(f"invalid duration {text!r}")

    total = Decimal(0)
    pos = 0
    while pos < len(rest):
        match = _DURATION_PART_RE.match(rest, pos)
        if match is None:
            raise ValueError(f"invalid duration {text!r}")
        whole, fraction, unit = match.group(1), match.group(2) or "", match.group(3)
        if not whole and not fraction:
            raise ValueError(f"invalid duration {text!r}")
        number = Decimal(f"{whole or '0'}.{fraction or '0'}")
        total += number * _UNIT_NANOSECONDS[unit]
        pos = match.end()

    microseconds = int(total / 1000)
    if negative:
        microseconds = -microseconds
    return timedelta(microseconds=microseconds)


def get_env_duration(key: str, default: timedelta) -> timedelta:
    """Return *key* parsed as a duration, or *default* if blank or invalid."""
    value = os.environ.get(key, "").strip()
    if not value:
        return default
    try:
        return parse_duration(value)
    except ValueError:
        return default


def _error(message: str, status: int) -> tuple[Response, int]:
    return jsonify({"error": message}), status


def _attachment(path: str, filename: str):
    if not os.path.isfile(path):
        return Response("404 page not found", status=404, mimetype="text/plain")
    return send_file(os.path.abspath(path), as_attachment=True, download_name=filename)


def create_app(
    registry: Registry,
    queue: BuildQueue,
    history: HistoryStore,
    index_html: bytes | str,
) -> Flask:
    """Return the Flask application serving the web page and the JSON API."""
    app = Flask(__name__)
    app.json.ensure_ascii = False
    app.json.sort_keys = False
    index_bytes = index_html.encode("utf-8") if isinstance(index_html, str) else index_html

    @app.get("/")
    def index():
        return Response(index_bytes, status=200, content_type="text/html; charset=utf-8")

    @app.get("/api/modules")
    def list_modules():
        return jsonify([module.to_dict() for module in registry.list()])

    @app.post("/api/parse")
    def parse():
        payload = request.get_json(silent=True)
        if not isinstance(payload, dict):
            return _error(_BAD_REQUEST, 400)
        output = payload.get("output")
        if output is None:
            output = ""
        if not isinstance(output, str):
            return _error(_BAD_REQUEST, 400)
        try:
            result = parse_nginx_v(output)
        except ParseError as exc:
            return _error(str(exc), 400)
        return jsonify(result.to_dict())

    @app.post("/api/build")
    def build():
        payload = request.get_json(silent=True)
        try:
            build_request = BuildRequest.from_dict(payload)
        except ValueError:
            return _error(_BAD_REQUEST, 400)
        try:
            queue.validate_request(build_request)
        except ValidationError as exc:
            return _error(str(exc), 400)
        try:
            job = queue.enqueue(build_request)
        except Exception as exc:  # reported to the client as a server error
            return _error(str(exc), 500)
        return jsonify({"id": job.id})

    @app.get("/api/jobs/<job_id>")
    def get_job(job_id: str):
        job = queue.get(job_id)
        if job is None:
            return _error(_JOB_NOT_FOUND, 404)
        return jsonify(job.to_dict())

    @app.get("/api/jobs/<job_id>/download")
    def download_job(job_id: str):
        job = queue.get(job_id)
        if job is None:
            return _error(_JOB_NOT_FOUND, 404)
        if job.status != Status.SUCCESS or not job.artifact_path:
            return _error("产物尚未准备好", 400)
        filename = "nginx"
        if job.result is not None and job.result.version:
            filename = f"nginx-{job.result.version}"
        return _attachment(job.artifact_path, filename)

    @app.get("/api/history")
    def list_history():
        return jsonify([entry.to_dict() for entry in history.list()])

    @app.get("/api/history/<history_id>/download")
    def download_history(history_id: str):
        entry = next((item for item in history.list() if item.id == history_id), None)
        if entry is None:
            return _error("记录不存在", 404)
        if not entry.artifact:
            return _error("产物不存在", 400)
        filename = f"nginx-{entry.version}" if entry.version else "nginx"
        return _attachment(entry.artifact, filename)

    @app.get("/api/health")
    def health():
        return jsonify({"status": "ok"})

    return app


def _read_bytes(path: str) -> bytes:
    with open(path, "rb") as handle:
        return handle.read()


def main(argv: list[str] | None = None) -> None:
    """Load configuration, start the build workers and serve the web API."""
    parser = argparse.ArgumentParser(description="Build nginx with extra modules.")
    parser.add_argument(
        "--modules-config",
        default=os.path.join("config", "modules.json"),
        help="JSON file listing the preset modules",
    )
    parser.add_argument(
        "--index-html",
        default=os.path.join("web", "index.html"),
        help="HTML page served at /",
    )
    args = parser.parse_args(argv)

    registry = load_registry(_read_bytes(args.modules_config))
    index_html = _read_bytes(args.index_html)

    workers = get_env_int("MAX_WORKERS", 2)
    modules_dir = get_env("MODULES_DIR", "./modules")
    work_root = get_env("WORKDIR", "/tmp/nginx-build")
    timeout = get_env_duration("BUILD_TIMEOUT", timedelta(minutes=90))
    history_path = get_env("HISTORY_FILE", "./data/history.json")

    history = HistoryStore(history_path)
    queue = BuildQueue(workers, modules_dir, work_root, registry, timeout, history)
    queue.start()

    app = create_app(registry, queue, history, index_html)

    port = get_env("PORT", "8080")
    address = port if port.startswith(":") else ":" + port
    host, _, port_text = address.rpartition(":")
    debug = os.environ.get("GIN_MODE", "").strip() == "debug"
    app.run(host=host or "0.0.0.0", port=int(port_text), debug=debug, threaded=True)