"""
SANDBOX MODULE - run untrusted generated scripts in a separate process

Purpose:
    1. Give every execution its own uniquely named scratch directory
    2. Run the script in a fresh, resource-limited interpreter
    3. Capture stdout (the results) and stderr (the errors) separately
    4. Always remove the scratch directory, whatever happened

Data Flow:
    source → GeneratedScript → scratch_dir/<id>/script.py → python -I → ExecutionResult
"""

import asyncio
import json
import logging
import os
import shutil
import signal
import sys
import time
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from app.ai_feature.errors import ExecutionFailure

logger = logging.getLogger(__name__)

SCRIPT_FILENAME = "script.py"

# Runs inside the child interpreter before the generated code.
# argv: script path, cpu seconds, memory bytes, max file bytes
BOOTSTRAP = """
import json, os, runpy, sys

try:
    import resource
except ImportError:
    resource = None

sys.dont_write_bytecode = True
script_path, cpu_seconds, memory_bytes, file_bytes = sys.argv[1], *map(int, sys.argv[2:5])


def _limit(kind, value):
    soft, hard = resource.getrlimit(kind)
    if hard != resource.RLIM_INFINITY:
        value = min(value, hard)
    resource.setrlimit(kind, (value, hard))


if resource is not None:
    _limit(resource.RLIMIT_CPU, cpu_seconds)
    if memory_bytes > 0:
        _limit(resource.RLIMIT_AS, memory_bytes)
    _limit(resource.RLIMIT_FSIZE, file_bytes)

snapshot = json.load(sys.stdin)

ROOT = os.path.realpath(os.getcwd())
WRITE_FLAGS = os.O_WRONLY | os.O_RDWR | os.O_APPEND | os.O_CREAT | os.O_TRUNC
NETWORK_EVENTS = {
    "socket.connect", "socket.bind", "socket.sendto", "socket.sendmsg", "socket.getaddrinfo",
}
PROCESS_EVENTS = {
    "subprocess.Popen", "os.system", "os.exec", "os.spawn", "os.posix_spawn",
    "os.fork", "os.forkpty", "os.kill", "os.killpg",
}
# event -> positions of the path arguments it modifies
PATH_EVENTS = {
    "os.remove": (0,), "os.rename": (0, 1), "os.mkdir": (0,), "os.rmdir": (0,),
    "shutil.rmtree": (0,), "os.truncate": (0,), "os.chmod": (0,), "os.chown": (0,),
    "os.utime": (0,), "os.symlink": (1,), "os.link": (1,),
}


def _inside_root(path):
    if isinstance(path, int):
        # already open descriptor
        return True
    resolved = os.path.realpath(os.fsdecode(path))
    return resolved == ROOT or resolved.startswith(ROOT + os.sep)


def _is_write(mode, flags):
    if isinstance(mode, str) and any(c in mode for c in "wax+"):
        return True
    return isinstance(flags, int) and bool(flags & WRITE_FLAGS)


def _guard(event, args):
    if event in NETWORK_EVENTS:
        raise PermissionError("network access is disabled in the sandbox")
    if event in PROCESS_EVENTS:
        raise PermissionError("process control is disabled in the sandbox")
    if event == "open":
        path, mode, flags = (tuple(args) + (None, None, None))[:3]
        if path is not None and _is_write(mode, flags) and not _inside_root(path):
            raise PermissionError(f"writing outside the sandbox directory is not allowed: {path}")
    elif event in PATH_EVENTS:
        for position in PATH_EVENTS[event]:
            if position < len(args) and args[position] is not None and not _inside_root(args[position]):
                raise PermissionError(f"{event} outside the sandbox directory is not allowed")


sys.addaudithook(_guard)

sys.argv = [script_path]
runpy.run_path(
    script_path,
    init_globals={name: rows for name, rows in snapshot.items()},
    run_name="__main__",
)
"""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_script_id() -> str:
    return uuid.uuid4().hex


class GeneratedScript(BaseModel):
    """Candidate script owned by exactly one execution attempt."""

    script_id: str
    source: str
    created_at: datetime = Field(default_factory=_utcnow)

    model_config = ConfigDict(frozen=True)


class ExecutionResult(BaseModel):
    script_id: Optional[str] = None
    output: str = ""
    success: bool
    error: Optional[str] = None
    timed_out: bool = False

    model_config = ConfigDict(frozen=True)


class SandboxExecutor:
    """
    Executes candidate scripts in an isolated child process.

    The child gets:
        - its own process group (killed as a whole on timeout / cancel)
        - cwd = its private scratch directory
        - a minimal environment and an isolated interpreter (-I)
        - an audit hook refusing network access, process control and writes
          outside the scratch directory
        - CPU, memory and file-size rlimits where the platform has them
        - the data snapshot on stdin, exposed as globals named after the tables

    Example:
        executor = SandboxExecutor("/tmp/scripts", timeout_seconds=5)
        result = await executor.execute('print("hi")')
        result.success, result.output  # True, "hi"
    """

    def __init__(
        self,
        scratch_dir: str,
        timeout_seconds: float = 15.0,
        python_executable: Optional[str] = None,
        memory_limit_mb: int = 512,
        max_output_bytes: int = 64_000,
        max_file_bytes: int = 10 * 1024 * 1024,
    ):
        self.scratch_dir = Path(scratch_dir)
        self.timeout_seconds = timeout_seconds
        self.python_executable = python_executable or sys.executable
        self.memory_limit_mb = memory_limit_mb
        self.max_output_bytes = max_output_bytes
        self.max_file_bytes = max_file_bytes

    def artifact_path(self, script_id: str) -> Path:
        return self.scratch_dir / script_id

    async def execute(
        self,
        source: str,
        snapshot: Optional[Dict[str, List[Dict[str, Any]]]] = None,
    ) -> ExecutionResult:
        script = GeneratedScript(script_id=new_script_id(), source=source)
        try:
            workdir = self._materialize(script)
        except ExecutionFailure as e:
            logger.error(f"Script {script.script_id} rejected: {e}")
            return ExecutionResult(script_id=script.script_id, success=False, error=str(e))

        try:
            return await self._run(script, workdir, snapshot or {})
        finally:
            shutil.rmtree(workdir, ignore_errors=True)
            logger.debug(f"Removed scratch directory for script {script.script_id}")

    def _materialize(self, script: GeneratedScript) -> Path:
        workdir = self.artifact_path(script.script_id)
        try:
            self.scratch_dir.mkdir(parents=True, exist_ok=True)
            # exclusive: an existing directory belongs to someone else
            workdir.mkdir(mode=0o700)
        except FileExistsError:
            raise ExecutionFailure(
                f"Script artifact {script.script_id} already exists; refusing to overwrite it"
            )
        except OSError as e:
            raise ExecutionFailure(f"Could not create script artifact: {e}")

        try:
            (workdir / SCRIPT_FILENAME).write_text(script.source, encoding="utf-8")
        except OSError as e:
            shutil.rmtree(workdir, ignore_errors=True)
            raise ExecutionFailure(f"Could not write script artifact: {e}")
        return workdir

    def _command(self, workdir: Path) -> List[str]:
        cpu_seconds = int(self.timeout_seconds) + 1
        memory_bytes = self.memory_limit_mb * 1024 * 1024
        return [
            self.python_executable,
            "-I",
            "-B",
            "-c",
            BOOTSTRAP,
            str(workdir / SCRIPT_FILENAME),
            str(cpu_seconds),
            str(memory_bytes),
            str(self.max_file_bytes),
        ]

    def _environment(self) -> Dict[str, str]:
        return {
            "PATH": os.environ.get("PATH", ""),
            "PYTHONIOENCODING": "utf-8",
            "PYTHONDONTWRITEBYTECODE": "1",
        }

    async def _run(
        self,
        script: GeneratedScript,
        workdir: Path,
        snapshot: Dict[str, List[Dict[str, Any]]],
    ) -> ExecutionResult:
        payload = json.dumps(snapshot, default=str).encode("utf-8")
        started = time.monotonic()

        try:
            process = await asyncio.create_subprocess_exec(
                *self._command(workdir),
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(workdir),
                env=self._environment(),
                start_new_session=True,
            )
        except OSError as e:
            logger.error(f"Could not launch sandbox for script {script.script_id}: {e}")
            return ExecutionResult(
                script_id=script.script_id,
                success=False,
                error=f"Could not launch the analysis process: {e}",
            )

        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(input=payload), timeout=self.timeout_seconds
            )
        except asyncio.TimeoutError:
            await _kill_group(process)
            logger.warning(
                f"Script {script.script_id} timed out after {self.timeout_seconds}s"
            )
            return ExecutionResult(
                script_id=script.script_id,
                success=False,
                error=f"Execution timed out after {self.timeout_seconds} seconds",
                timed_out=True,
            )
        except BaseException:
            # cancellation included
            await _kill_group(process)
            raise

        elapsed = time.monotonic() - started
        output = self._decode(stdout).rstrip("\r\n")
        errors = self._decode(stderr).strip()

        if process.returncode == 0:
            logger.info(f"Script {script.script_id} finished in {elapsed:.2f}s")
            return ExecutionResult(script_id=script.script_id, output=output, success=True)

        logger.info(
            f"Script {script.script_id} exited with code {process.returncode} after {elapsed:.2f}s"
        )
        return ExecutionResult(
            script_id=script.script_id,
            output=output,
            success=False,
            error=errors or f"Process exited with code {process.returncode}",
        )

    def _decode(self, data: Optional[bytes]) -> str:
        if not data:
            return ""
        text = data[: self.max_output_bytes].decode("utf-8", errors="replace")
        if len(data) > self.max_output_bytes:
            text += "\n...[output truncated]"
        return text


async def _kill_group(process: asyncio.subprocess.Process) -> None:
    if process.returncode is not None:
        return
    try:
        if hasattr(os, "killpg"):
            os.killpg(process.pid, signal.SIGKILL)
        else:
            process.kill()
    except ProcessLookupError:
        pass
    await process.wait()


def reap_orphaned_artifacts(scratch_dir: str, max_age_seconds: float) -> int:
    """
    Remove execution directories older than max_age_seconds.

    Normal executions clean up after themselves; this only catches what a
    crashed worker left behind.
    """
    root = Path(scratch_dir)
    if not root.is_dir():
        return 0

    cutoff = time.time() - max_age_seconds
    removed = 0
    for entry in root.iterdir():
        try:
            if entry.stat().st_mtime >= cutoff:
                continue
            if entry.is_dir():
                shutil.rmtree(entry)
            else:
                entry.unlink()
            removed += 1
        except FileNotFoundError:
            continue
        except OSError as e:
            logger.warning(f"Could not reap orphaned artifact {entry}: {e}")

    if removed:
        logger.info(f"Reaped {removed} orphaned script artifacts from {root}")
    return removed
