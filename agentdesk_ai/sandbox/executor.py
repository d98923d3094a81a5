"""Sandbox executor

Runs one agent-authored script per OS process with hard ceilings:

- Wall clock: the whole process group is killed on expiry (``TimedOut``).
- CPU time and address space: POSIX rlimits set in the child before exec;
  a breach is reported as ``ResourceExceeded``.
- Output: stdout/stderr are drained concurrently and truncated at the
  configured byte ceiling, never buffered unbounded.
- Filesystem: only declared artifact paths under the per-run scratch
  directory may be written. Paths escaping the scratch directory are rejected
  before launch, jobs run behind an audit hook that aborts on any other write
  or process spawn, and undeclared files left in the scratch directory are
  removed. Jobs of one run share its scratch directory, so the paths declared
  by its concurrent jobs are not treated as undeclared. Each case is reported
  as ``SandboxViolation``.
- Cancellation: ``cancel(job_id)`` sends SIGTERM to the process group and
  SIGKILL after the grace period; the job is reported ``Cancelled``.

Every exit path reaps the worker and kills its process group, so no worker
outlives ``run()``.

Typical usage:
    executor = SandboxExecutor(SandboxConfig())
    result = await executor.run(
        SandboxJob(run_id="r1", source="print('hi')"),
        scratch_dir=project.scratch_dir("r1"),
        store=project.store,
    )
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import math
import os
import resource
import shutil
import signal
import sys
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Set, Tuple

from ..core.config import SandboxConfig
from ..memory.store import SqlMemoryStore
from .models import (
    ArtifactRecord,
    ResourceLimits,
    SandboxJob,
    SandboxResult,
    SandboxStatus,
)


logger = logging.getLogger(__name__)

VIOLATION_EXIT_CODE = 86
MEMORY_EXIT_CODE = 87
_CHUNK = 64 * 1024

# Executed with ``python -I -B -c``; argv[1] is the script path. Writes are
# allowed only to declared artifacts, the private TMPDIR and os.devnull, and
# no other process may be started.
_PYTHON_BOOTSTRAP = r"""
import json, os, runpy, sys

_SPAWN_EVENTS = frozenset(
    ("subprocess.Popen", "os.system", "os.exec", "os.posix_spawn", "os.spawn", "os.fork", "os.forkpty", "pty.spawn")
)

def _install_guard():
    scratch = os.path.realpath(os.environ["AGENTDESK_SCRATCH"])
    tmp = os.path.realpath(os.environ["TMPDIR"])
    allowed = {os.path.realpath(os.path.join(scratch, p)) for p in json.loads(os.environ["AGENTDESK_ARTIFACTS"])}
    write_flags = os.O_WRONLY | os.O_RDWR | os.O_CREAT | os.O_APPEND | os.O_TRUNC
    devnull = os.path.realpath(os.devnull)

    def _inside(real, base):
        return real == base or real.startswith(base + os.sep)

    def _may_write(path):
        real = os.path.realpath(os.fsdecode(path))
        return real in allowed or real == devnull or _inside(real, tmp)

    def _deny(event, path):
        sys.stderr.write("SandboxViolation: %s %s\n" % (event, path))
        sys.stderr.flush()
        os._exit(__VIOLATION_EXIT__)

    def _hook(event, args):
        if event == "open":
            path, mode, flags = args
            if path is None or isinstance(path, int):
                return
            writing = bool(flags & write_flags) if isinstance(flags, int) else False
            if mode is not None and any(c in str(mode) for c in "wax+"):
                writing = True
            if writing and not _may_write(path):
                _deny(event, path)
        elif event in ("os.remove", "os.truncate", "os.rmdir"):
            path = args[0]
            if not isinstance(path, int) and not _may_write(path):
                _deny(event, path)
        elif event in ("os.rename", "os.link", "os.symlink"):
            for path in args[1:2] if event == "os.symlink" else args[:2]:
                if not isinstance(path, int) and not _may_write(path):
                    _deny(event, path)
        elif event == "os.mkdir":
            path = args[0]
            if isinstance(path, int):
                return
            real = os.path.realpath(os.fsdecode(path))
            if not (_inside(real, scratch) or _inside(real, tmp)):
                _deny(event, path)
        elif event == "shutil.rmtree":
            _deny(event, args[0])
        elif event in _SPAWN_EVENTS:
            _deny(event, args[0] if args else "")

    sys.addaudithook(_hook)

_script = sys.argv[1]
sys.argv = [_script]
_install_guard()
try:
    runpy.run_path(_script, run_name="__main__")
except MemoryError:
    sys.stderr.write("ResourceExceeded: MemoryError\n")
    sys.stderr.flush()
    os._exit(__MEMORY_EXIT__)
""".replace("__VIOLATION_EXIT__", str(VIOLATION_EXIT_CODE)).replace("__MEMORY_EXIT__", str(MEMORY_EXIT_CODE))


@dataclass
class _ActiveJob:
    job: SandboxJob
    process: asyncio.subprocess.Process
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event)


@dataclass
class _ScratchClaims:
    """Paths declared by the jobs sharing one scratch directory while any of them runs."""

    jobs: int = 0
    declared: Set[str] = field(default_factory=set)


@dataclass(frozen=True)
class _EffectiveLimits:
    cpu_seconds: float
    wall_seconds: float
    memory_bytes: int
    output_bytes: int


def _list_files(root: Path) -> Set[str]:
    if not root.exists():
        return set()
    return {p.relative_to(root).as_posix() for p in root.rglob("*") if p.is_file() or p.is_symlink()}


def _is_inside(path: Path, base: Path) -> bool:
    try:
        path.relative_to(base)
        return True
    except ValueError:
        return False


class SandboxExecutor:
    """Run ``SandboxJob`` instances in isolated, resource-limited processes."""

    def __init__(self, config: Optional[SandboxConfig] = None) -> None:
        self._config = config or SandboxConfig()
        self._active: Dict[str, _ActiveJob] = {}
        self._claims: Dict[Path, _ScratchClaims] = {}

    def active_jobs(self) -> List[str]:
        return list(self._active)

    def cancel(self, job_id: str) -> bool:
        """Request cancellation of an in-flight job. Returns False if it is not running."""
        active = self._active.get(job_id)
        if active is None:
            return False
        logger.info("Cancelling sandbox job %s", job_id)
        active.cancel_event.set()
        return True

    def cancel_run(self, run_id: str) -> int:
        """Cancel every in-flight job owned by ``run_id``; returns the number signalled."""
        count = 0
        for job_id, active in list(self._active.items()):
            if active.job.run_id == run_id and self.cancel(job_id):
                count += 1
        return count

    async def run(
        self,
        job: SandboxJob,
        *,
        scratch_dir: Path,
        store: Optional[SqlMemoryStore] = None,
    ) -> SandboxResult:
        """
        Execute ``job`` and return its outcome.

        Args:
            job: The script payload, limits and declared artifacts.
            scratch_dir: The owning run's scratch directory (created if missing).
            store: When given, declared artifacts are recorded in project memory
                under ``artifact:<run_id>/<path>``.

        Returns:
            A ``SandboxResult``; sandbox outcomes are reported, never raised.
        """
        limits = self._effective_limits(job.limits)
        scratch = Path(scratch_dir).resolve()
        scratch.mkdir(parents=True, exist_ok=True)

        declared, problem = self._resolve_declared(job, scratch)
        if problem is not None:
            logger.warning("Sandbox job %s rejected before launch: %s", job.id, problem)
            return SandboxResult(job_id=job.id, status=SandboxStatus.sandbox_violation, detail=problem)

        work_dir = scratch.parent / f".job-{job.id}"
        tmp_dir = work_dir / "tmp"
        tmp_dir.mkdir(parents=True, exist_ok=True)
        claims = self._claims.setdefault(scratch, _ScratchClaims())
        claims.jobs += 1
        claims.declared |= declared
        started = time.monotonic()
        try:
            argv = self._argv(job, scratch, work_dir)
            env = self._env(job, scratch, tmp_dir)
            before = _list_files(scratch)
            result = await self._execute(job, argv, env, scratch, limits, started)
            result = self._enforce_confinement(result, scratch, before, declared | claims.declared)
            if result.status in (SandboxStatus.succeeded, SandboxStatus.failed):
                artifacts = await self._collect_artifacts(job, scratch, declared, store)
                result = result.model_copy(update={"artifacts": artifacts})
            return result
        finally:
            claims.jobs -= 1
            if claims.jobs == 0:
                self._claims.pop(scratch, None)
            shutil.rmtree(work_dir, ignore_errors=True)

    def _effective_limits(self, limits: ResourceLimits) -> _EffectiveLimits:
        cfg = self._config
        return _EffectiveLimits(
            cpu_seconds=limits.cpu_seconds or cfg.cpu_seconds,
            wall_seconds=limits.wall_seconds or cfg.wall_seconds,
            memory_bytes=limits.memory_bytes or cfg.memory_bytes,
            output_bytes=limits.output_bytes or cfg.output_bytes,
        )

    def _resolve_declared(self, job: SandboxJob, scratch: Path) -> Tuple[Set[str], Optional[str]]:
        declared: Set[str] = set()
        for raw in job.artifacts:
            candidate = Path(raw)
            if candidate.is_absolute():
                return declared, f"artifact path must be relative: {raw}"
            resolved = (scratch / candidate).resolve()
            if not _is_inside(resolved, scratch) or resolved == scratch:
                return declared, f"artifact path escapes the scratch directory: {raw}"
            declared.add(resolved.relative_to(scratch).as_posix())
        if job.path is not None:
            script = (scratch / job.path).resolve()
            if not _is_inside(script, scratch):
                return declared, f"script path escapes the scratch directory: {job.path}"
            if not script.is_file():
                return declared, f"script not found: {job.path}"
        return declared, None

    def _argv(self, job: SandboxJob, scratch: Path, work_dir: Path) -> List[str]:
        if job.source is not None:
            script = work_dir / "script.py"
            script.write_text(job.source, encoding="utf-8")
        else:
            script = (scratch / str(job.path)).resolve()

        python = self._config.python_executable or sys.executable
        return [python, "-I", "-B", "-c", _PYTHON_BOOTSTRAP, str(script)]

    def _env(self, job: SandboxJob, scratch: Path, tmp_dir: Path) -> Dict[str, str]:
        env = {
            "PATH": os.environ.get("PATH", "/usr/bin:/bin"),
            "HOME": str(scratch),
            "TMPDIR": str(tmp_dir),
            "LANG": os.environ.get("LANG", "C.UTF-8"),
            "PYTHONUNBUFFERED": "1",
            "AGENTDESK_SCRATCH": str(scratch),
            "AGENTDESK_ARTIFACTS": json.dumps(list(job.artifacts)),
            "AGENTDESK_JOB_ID": job.id,
            "AGENTDESK_RUN_ID": job.run_id,
        }
        return env

    def _preexec(self, limits: _EffectiveLimits):
        cpu = max(1, int(math.ceil(limits.cpu_seconds)))
        memory = int(limits.memory_bytes)

        def _apply_limits() -> None:
            resource.setrlimit(resource.RLIMIT_CPU, (cpu, cpu + 1))
            resource.setrlimit(resource.RLIMIT_AS, (memory, memory))
            resource.setrlimit(resource.RLIMIT_CORE, (0, 0))

        return _apply_limits

    async def _execute(
        self,
        job: SandboxJob,
        argv: List[str],
        env: Dict[str, str],
        scratch: Path,
        limits: _EffectiveLimits,
        started: float,
    ) -> SandboxResult:
        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.PIPE if job.stdin is not None else asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(scratch),
                env=env,
                start_new_session=True,
                preexec_fn=self._preexec(limits),
            )
        except OSError as exc:
            logger.error("Sandbox job %s failed to launch: %s", job.id, exc)
            return SandboxResult(job_id=job.id, status=SandboxStatus.failed, detail=f"launch failed: {exc}")

        active = _ActiveJob(job=job, process=proc)
        self._active[job.id] = active
        logger.debug("Sandbox job %s started pid=%s language=%s", job.id, proc.pid, job.language.value)

        stdout_task = asyncio.create_task(self._drain(proc.stdout, limits.output_bytes))
        stderr_task = asyncio.create_task(self._drain(proc.stderr, limits.output_bytes))
        stdin_task = asyncio.create_task(self._feed(proc, job.stdin)) if job.stdin is not None else None
        wait_task = asyncio.create_task(proc.wait())
        cancel_task = asyncio.create_task(active.cancel_event.wait())

        forced: Optional[SandboxStatus] = None
        try:
            done, _pending = await asyncio.wait(
                {wait_task, cancel_task},
                timeout=limits.wall_seconds,
                return_when=asyncio.FIRST_COMPLETED,
            )
            if wait_task not in done:
                if cancel_task in done:
                    forced = SandboxStatus.cancelled
                    await self._terminate(proc)
                else:
                    forced = SandboxStatus.timed_out
                    logger.info("Sandbox job %s exceeded %.1fs wall clock", job.id, limits.wall_seconds)
                    self._kill_group(proc)
                    await proc.wait()
        except asyncio.CancelledError:
            self._kill_group(proc)
            stdout_task.cancel()
            stderr_task.cancel()
            await asyncio.wait_for(proc.wait(), timeout=self._config.grace_seconds)
            raise
        finally:
            self._kill_group(proc)
            cancel_task.cancel()
            wait_task.cancel()
            if stdin_task is not None:
                stdin_task.cancel()
            self._active.pop(job.id, None)

        (stdout, out_trunc), (stderr, err_trunc) = await asyncio.gather(stdout_task, stderr_task)
        exit_code = proc.returncode
        status = forced or self._classify(exit_code, stderr)
        duration = time.monotonic() - started
        logger.debug("Sandbox job %s finished status=%s exit=%s in %.2fs", job.id, status.value, exit_code, duration)
        return SandboxResult(
            job_id=job.id,
            status=status,
            exit_code=exit_code,
            stdout=stdout,
            stderr=stderr,
            stdout_truncated=out_trunc,
            stderr_truncated=err_trunc,
            duration_seconds=duration,
            pid=proc.pid,
        )

    def _classify(self, exit_code: Optional[int], stderr: str) -> SandboxStatus:
        if exit_code == 0:
            return SandboxStatus.succeeded
        if exit_code == VIOLATION_EXIT_CODE:
            return SandboxStatus.sandbox_violation
        if exit_code == MEMORY_EXIT_CODE:
            return SandboxStatus.resource_exceeded
        if exit_code is not None and exit_code < 0:
            if -exit_code in (signal.SIGXCPU, signal.SIGKILL):
                return SandboxStatus.resource_exceeded
        if "MemoryError" in stderr:
            return SandboxStatus.resource_exceeded
        return SandboxStatus.failed

    async def _terminate(self, proc: asyncio.subprocess.Process) -> None:
        self._signal_group(proc, signal.SIGTERM)
        try:
            await asyncio.wait_for(proc.wait(), timeout=self._config.grace_seconds)
        except asyncio.TimeoutError:
            self._kill_group(proc)
            await proc.wait()

    def _kill_group(self, proc: asyncio.subprocess.Process) -> None:
        self._signal_group(proc, signal.SIGKILL)

    def _signal_group(self, proc: asyncio.subprocess.Process, sig: int) -> None:
        try:
            os.killpg(proc.pid, sig)
        except (ProcessLookupError, PermissionError):
            pass

    async def _drain(self, stream: Optional[asyncio.StreamReader], cap: int) -> Tuple[str, bool]:
        if stream is None:
            return "", False
        kept = bytearray()
        truncated = False
        while True:
            chunk = await stream.read(_CHUNK)
            if not chunk:
                break
            room = cap - len(kept)
            if room > 0:
                kept.extend(chunk[:room])
            if len(chunk) > room:
                truncated = True
        return kept.decode("utf-8", errors="replace"), truncated

    async def _feed(self, proc: asyncio.subprocess.Process, data: str) -> None:
        if proc.stdin is None:
            return
        try:
            proc.stdin.write(data.encode("utf-8"))
            await proc.stdin.drain()
        except (BrokenPipeError, ConnectionResetError):
            pass
        finally:
            proc.stdin.close()

    def _enforce_confinement(
        self,
        result: SandboxResult,
        scratch: Path,
        before: Set[str],
        declared: Set[str],
    ) -> SandboxResult:
        stray = sorted(_list_files(scratch) - before - declared)
        if not stray:
            return result
        for rel in stray:
            try:
                (scratch / rel).unlink()
            except OSError:
                logger.warning("Could not remove undeclared sandbox output %s", rel)
        logger.warning("Sandbox job %s wrote undeclared files: %s", result.job_id, stray)
        if result.status in (SandboxStatus.cancelled, SandboxStatus.timed_out):
            return result
        return result.model_copy(
            update={
                "status": SandboxStatus.sandbox_violation,
                "detail": f"undeclared files written: {', '.join(stray)}",
            }
        )

    async def _collect_artifacts(
        self,
        job: SandboxJob,
        scratch: Path,
        declared: Set[str],
        store: Optional[SqlMemoryStore],
    ) -> List[ArtifactRecord]:
        records: List[ArtifactRecord] = []
        for rel in sorted(declared):
            path = scratch / rel
            if not path.is_file():
                continue
            data = path.read_bytes()
            content: Optional[str] = None
            if len(data) <= self._config.artifact_inline_bytes:
                try:
                    content = data.decode("utf-8")
                except UnicodeDecodeError:
                    content = None
            record = ArtifactRecord(
                path=rel,
                size=len(data),
                sha256=hashlib.sha256(data).hexdigest(),
                content=content,
            )
            if store is not None:
                key = f"artifact:{job.run_id}/{rel}"
                await store.write(
                    key,
                    record.model_dump(mode="json", exclude={"memory_key"}),
                    run_id=job.run_id,
                )
                record = record.model_copy(update={"memory_key": key})
            records.append(record)
        return records
