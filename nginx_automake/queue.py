"""Build job queue: runs nginx builds in background worker threads."""

from __future__ import annotations

import copy
import os
import queue as queue_lib
import secrets
import shutil
import subprocess
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum

from .history import HistoryEntry, HistoryStore, _format_time
from .parser import ParseResult, parse_nginx_v, valid_version
from .registry import Registry, module_flag, resolve_module_path, validate_custom_module

STEP_PARSE = "解析配置"
STEP_SOURCE = "准备源代码"
STEP_MODULES = "准备模块"
STEP_COMPILE = "执行编译"
STEP_ARTIFACT = "整理产物"
STEP_NAMES = (STEP_PARSE, STEP_SOURCE, STEP_MODULES, STEP_COMPILE, STEP_ARTIFACT)


class Status(str, Enum):
    """Overall state of a build job."""

    QUEUED = "queued"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"


class StepStatus(str, Enum):
    """State of a single build step."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


class ValidationError(ValueError):
    """Raised when a build request is not acceptable."""


@dataclass
class Step:
    """One stage of a build."""

    name: str
    status: StepStatus = StepStatus.PENDING
    message: str = ""

    def to_dict(self) -> dict:
        return {"name": self.name, "status": self.status.value, "message": self.message}


def _str_field(data: dict, key: str) -> str:
    value = data.get(key) or ""
    if not isinstance(value, str):
        raise ValueError(f"field {key!r} must be a string")
    return value


@dataclass
class CustomModuleRequest:
    """A module the user asks to clone from a repository."""

    name: str = ""
    repo: str = ""
    flag: str = ""

    @classmethod
    def from_dict(cls, data: dict) -> "CustomModuleRequest":
        if not isinstance(data, dict):
            raise ValueError("custom module must be an object")
        return cls(*(_str_field(data, key) for key in ("name", "repo", "flag")))

    def to_dict(self) -> dict:
        return {"name": self.name, "repo": self.repo, "flag": self.flag}


@dataclass
class BuildRequest:
    """What the user asked to build."""

    output: str = ""
    module_names: list[str] = field(default_factory=list)
    custom_modules: list[CustomModuleRequest] = field(default_factory=list)
    target_version: str = ""

    @classmethod
    def from_dict(cls, data: dict) -> "BuildRequest":
        """Build a request from its JSON form; raises ValueError on bad types."""
        if not isinstance(data, dict):
            raise ValueError("request must be an object")
        names = data.get("moduleNames") or []
        if not isinstance(names, list) or not all(isinstance(n, str) for n in names):
            raise ValueError("field 'moduleNames' must be a list of strings")
        customs = data.get("customModules") or []
        if not isinstance(customs, list):
            raise ValueError("field 'customModules' must be a list")
        return cls(
            output=_str_field(data, "output"),
            module_names=list(names),
            custom_modules=[CustomModuleRequest.from_dict(item) for item in customs],
            target_version=_str_field(data, "targetVersion"),
        )

    def to_dict(self) -> dict:
        return {
            "output": self.output,
            "moduleNames": list(self.module_names),
            "customModules": [module.to_dict() for module in self.custom_modules],
            "targetVersion": self.target_version,
        }


@dataclass
class Job:
    """A build job and everything known about its progress."""

    id: str
    request: BuildRequest
    created_at: datetime = field(default_factory=lambda: datetime.now().astimezone())
    status: Status = Status.QUEUED
    steps: list[Step] = field(default_factory=lambda: [Step(name) for name in STEP_NAMES])
    logs: list[str] = field(default_factory=list)
    error: str = ""
    artifact_path: str = ""
    script: str = ""
    result: ParseResult | None = None

    def to_dict(self) -> dict:
        """Return the JSON representation used by the web API."""
        return {
            "id": self.id,
            "createdAt": _format_time(self.created_at),
            "status": self.status.value,
            "steps": [step.to_dict() for step in self.steps],
            "logs": list(self.logs),
            "error": self.error,
            "artifactPath": self.artifact_path,
            "script": self.script,
            "result": self.result.to_dict() if self.result is not None else None,
            "request": self.request.to_dict(),
        }


def compose_configure_args(original: list[str], module_args: list[str]) -> list[str]:
    """Drop module options from *original* and append *module_args*."""
    kept = [a for a in original if not a.startswith(("--add-module=", "--add-dynamic-module="))]
    return kept + list(module_args)


def build_script(version: str, configure_args: list[str]) -> str:
    """Return a standalone bash script that reproduces the build."""
    return (
        "#!/usr/bin/env bash\nset -euo pipefail\n\n"
        f"VERSION={version}\nWORKDIR=./build-$VERSION\n\n"
        "mkdir -p $WORKDIR\ncd $WORKDIR\n\n"
        "curl -fSL https://nginx.org/download/nginx-$VERSION.tar.gz -o nginx.tar.gz\n"
        "tar -xzf nginx.tar.gz\ncd nginx-$VERSION\n\n"
        f"./configure {' '.join(configure_args)}\nmake -j$(nproc)\n\n"
        "cp objs/nginx ./nginx-$VERSION\n"
    )


def random_id() -> str:
    """Return a random 24-character hexadecimal job id."""
    return secrets.token_hex(12)


class BuildQueue:
    """Runs build jobs on a fixed number of worker threads."""

    def __init__(
        self,
        workers: int,
        modules_dir,
        work_root,
        registry: Registry,
        timeout: float | timedelta = 0.0,
        history: HistoryStore | None = None,
    ) -> None:
        if isinstance(timeout, timedelta):
            timeout = timeout.total_seconds()
        self._jobs: dict[str, Job] = {}
        self._lock = threading.Lock()
        self._pending: queue_lib.Queue[Job] = queue_lib.Queue(maxsize=100)
        self._workers = workers
        self._modules_dir = os.fspath(modules_dir)
        self._work_root = os.fspath(work_root)
        self._registry = registry
        self._timeout = float(timeout)
        self._history = history

    def start(self) -> None:
        """Start the worker threads."""
        for _ in range(self._workers):
            threading.Thread(target=self._worker, daemon=True).start()

    def enqueue(self, request: BuildRequest) -> Job:
        """Register a new job for *request* and queue it for a worker."""
        job = Job(id=random_id(), request=request)
        with self._lock:
            self._jobs[job.id] = job
        self._pending.put(job)
        return job

    def get(self, job_id: str) -> Job | None:
        """Return a snapshot of the job with *job_id*, or None."""
        with self._lock:
            return copy.deepcopy(self._jobs.get(job_id))

    def validate_request(self, request: BuildRequest) -> None:
        """Raise :class:`ValidationError` if *request* cannot be built."""
        if not request.output.strip():
            raise ValidationError("nginx -V 输出不能为空")
        if request.target_version.strip() and not valid_version(request.target_version):
            raise ValidationError("目标版本号格式不正确，例如 1.24.0")

    def _worker(self) -> None:
        while True:
            job = self._pending.get()
            self._update(job.id, status=Status.RUNNING)
            deadline = time.monotonic() + self._timeout if self._timeout > 0 else None
            try:
                self._run_job(job, deadline)
            except Exception as exc:  # every failure is recorded on the job
                self._fail_job(job.id, exc)
            else:
                self._update(job.id, status=Status.SUCCESS)
            self._pending.task_done()

    @contextmanager
    def _step(self, job_id: str, name: str, running: str, done: str):
        if running:
            self._set_step(job_id, name, StepStatus.RUNNING, running)
        try:
            yield
        except Exception as exc:
            self._set_step(job_id, name, StepStatus.FAILED, str(exc))
            raise
        self._set_step(job_id, name, StepStatus.SUCCESS, done)

    def _run_job(self, job: Job, deadline: float | None) -> None:
        request = job.request
        with self._step(job.id, STEP_PARSE, "", "解析完成"):
            parsed = parse_nginx_v(request.output)
            if request.target_version.strip():
                parsed.version = request.target_version.strip()
        self._update(job.id, result=parsed)
        version = parsed.version

        work_dir = os.path.join(self._work_root, job.id)
        nginx_tar = os.path.join(work_dir, f"nginx-{version}.tar.gz")
        src_dir = os.path.join(work_dir, f"nginx-{version}")
        with self._step(job.id, STEP_SOURCE, "", "源码就绪"):
            os.makedirs(work_dir, mode=0o755, exist_ok=True)
            self._set_step(job.id, STEP_SOURCE, StepStatus.RUNNING, "下载 Nginx 源码")
            url = f"https://nginx.org/download/nginx-{version}.tar.gz"
            self._run(job.id, work_dir, deadline, "curl", "-fSL", url, "-o", nginx_tar)
            self._run(job.id, work_dir, deadline, "tar", "-xzf", nginx_tar)

        with self._step(job.id, STEP_MODULES, "同步模块", "模块就绪"):
            module_args = self._prepare_modules(job, work_dir, deadline)

        with self._step(job.id, STEP_COMPILE, "执行 configure", "编译完成"):
            configure_args = compose_configure_args(parsed.arguments, module_args)
            self._update(job.id, script=build_script(version, configure_args))
            self._run(job.id, src_dir, deadline, "./configure", *configure_args)
            self._append_log(job.id, "configure 完成，开始编译")
            self._run(job.id, src_dir, deadline, "make", "-j", str(max(1, os.cpu_count() or 1)))

        artifact_dir = os.path.join(work_dir, "artifact")
        artifact = os.path.join(artifact_dir, f"nginx-{version}")
        with self._step(job.id, STEP_ARTIFACT, "整理 nginx 二进制", "产物已生成"):
            os.makedirs(artifact_dir, mode=0o755, exist_ok=True)
            with open(os.path.join(src_dir, "objs", "nginx"), "rb") as source, open(
                artifact, "wb"
            ) as target:
                shutil.copyfileobj(source, target)
                target.flush()
                os.fsync(target.fileno())
            self._update(job.id, artifact_path=artifact)

        self._record(job, version, Status.SUCCESS.value, artifact=artifact)

    def _record(self, job: Job, version: str, status: str, **extra: str) -> None:
        if self._history is None:
            return
        entry = HistoryEntry(
            id=job.id,
            created_at=job.created_at,
            version=version,
            modules=list(job.request.module_names),
            status=status,
            **extra,
        )
        try:
            self._history.append(entry)
        except OSError:
            pass

    def _prepare_modules(self, job: Job, work_dir: str, deadline: float | None) -> list[str]:
        module_args = []
        for name in job.request.module_names:
            module = self._registry.get(name)
            if module is None:
                raise RuntimeError(f"模块 {name} 未在预设列表中")
            module_path = resolve_module_path(module, self._modules_dir, work_dir)
            if module.path and not os.path.exists(module_path) and not module.repo:
                raise RuntimeError(f"预置模块 {name} 未找到，请提前下载到 {module_path}")
            self._clone_module(job.id, module.repo, module_path, deadline)
            module_args.append(f"{module_flag(module)}={module_path}")

        for custom in job.request.custom_modules:
            module = validate_custom_module(custom.name, custom.repo, custom.flag)
            module_path = resolve_module_path(module, self._modules_dir, work_dir)
            self._clone_module(job.id, module.repo, module_path, deadline)
            module_args.append(f"{module_flag(module)}={module_path}")
        return module_args

    def _clone_module(self, job_id: str, repo: str, directory: str, deadline) -> None:
        if not os.path.exists(directory):
            self._run(
                job_id, os.path.dirname(directory), deadline,
                "git", "clone", "--depth", "1", repo, directory,
            )

    def _run(self, job_id: str, cwd: str, deadline: float | None, *command: str) -> None:
        remaining = None
        if deadline is not None:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise TimeoutError("context deadline exceeded")
        process = subprocess.Popen(
            command, cwd=cwd, stdout=subprocess.PIPE, stderr=subprocess.PIPE
        )
        readers = [
            threading.Thread(target=self._stream_output, args=(job_id, stream), daemon=True)
            for stream in (process.stdout, process.stderr)
        ]
        for reader in readers:
            reader.start()
        try:
            code = process.wait(timeout=remaining)
        except subprocess.TimeoutExpired:
            process.kill()
            code = None
        process.wait()
        for reader in readers:
            reader.join()
        if code is None:
            raise TimeoutError("signal: killed (build timed out)")
        if code < 0:
            raise RuntimeError(f"signal: {-code}")
        if code > 0:
            raise RuntimeError(f"exit status {code}")

    def _stream_output(self, job_id: str, stream) -> None:
        with stream:
            for raw in stream:
                line = raw.decode("utf-8", errors="replace").rstrip("\n")
                self._append_log(job_id, line[:-1] if line.endswith("\r") else line)

    def _append_log(self, job_id: str, line: str) -> None:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                return
            if len(job.logs) > 2000:
                job.logs = job.logs[-1500:]
            job.logs.append(line)

    def _set_step(self, job_id: str, name: str, status: StepStatus, message: str) -> None:
        with self._lock:
            job = self._jobs.get(job_id)
            step = next((s for s in job.steps if s.name == name), None) if job else None
            if step is not None:
                step.status = status
                step.message = message

    def _update(self, job_id: str, **changes) -> None:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is not None:
                for key, value in changes.items():
                    setattr(job, key, value)

    def _fail_job(self, job_id: str, error: Exception) -> None:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                return
            job.status = Status.FAILED
            job.error = str(error)
            if job.result is not None:
                self._record(job, job.result.version, job.status.value, error=job.error)