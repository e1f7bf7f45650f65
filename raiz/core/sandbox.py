"""
Containment for external build tools.

Every untrusted command goes through ``SandboxExecutor.execute``:

- argv only, never a shell;
- environment reset to PATH plus a throwaway home directory;
- the caller's working directory is used as-is and never shared between two
  running executions;
- the child gets its own session so a timeout or cancellation kills the whole
  process group, not just the direct child;
- merged stdout/stderr is capped; truncation is reported on the result.
"""
import asyncio
import logging
import os
import shutil
import signal
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path
from typing import List, Sequence, Set, Union

from raiz.errors import SandboxError, SandboxLaunchError, SandboxTimeout

CHUNK_SIZE = 64 * 1024
DEFAULT_GRACE_PERIOD = 5.0


@dataclass
class SandboxResult:
    exit_code: int
    output: str
    truncated: bool = False
    duration_seconds: float = 0.0


class _Capture:
    def __init__(self, cap: int) -> None:
        self.cap = cap
        self.buffer = bytearray()
        self.truncated = False

    def feed(self, chunk: bytes) -> None:
        room = self.cap - len(self.buffer)
        if room > 0:
            self.buffer.extend(chunk[:room])
        if len(chunk) > room:
            self.truncated = True


class SandboxExecutor:
    def __init__(self, grace_period: float = DEFAULT_GRACE_PERIOD) -> None:
        self.grace_period = grace_period
        self._busy: Set[str] = set()

    async def execute(
        self,
        argv: Sequence[str],
        working_dir: Union[str, Path],
        timeout: float,
        output_cap_bytes: int,
        home_env_vars: Sequence[str] = (),
    ) -> SandboxResult:
        """
        Run ``argv`` inside ``working_dir`` and return its exit code and output.

        Raises SandboxTimeout when ``timeout`` elapses (the process group is
        killed first) and SandboxLaunchError when the command cannot start.
        ``home_env_vars`` names extra variables (e.g. GRADLE_USER_HOME) that are
        pinned to the throwaway home directory.
        """
        argv = [str(a) for a in argv]
        if not argv:
            raise SandboxLaunchError("Empty command")

        workdir = Path(working_dir)
        if not workdir.is_dir():
            raise SandboxLaunchError(f"Working directory does not exist: {workdir}")

        key = str(workdir.resolve())
        if key in self._busy:
            raise SandboxError(f"Working directory already in use by another execution: {key}")

        self._busy.add(key)
        home = tempfile.mkdtemp(prefix="raiz-sandbox-")
        try:
            return await self._run(argv, key, home, timeout, output_cap_bytes, home_env_vars)
        finally:
            self._busy.discard(key)
            shutil.rmtree(home, ignore_errors=True)

    async def _run(self, argv: List[str], cwd: str, home: str, timeout: float, cap: int,
                   home_env_vars: Sequence[str]) -> SandboxResult:
        env = self.build_env(home, home_env_vars)
        logging.debug(f"Sandbox: {argv} in {cwd} (timeout={timeout}s, cap={cap}B)")

        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                cwd=cwd,
                env=env,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                start_new_session=(os.name == "posix"),
            )
        except (OSError, ValueError) as e:
            raise SandboxLaunchError(f"Cannot launch '{argv[0]}': {e}") from e

        start = time.monotonic()
        capture = _Capture(cap)
        try:
            await asyncio.wait_for(self._collect(process, capture), timeout=timeout)
        except asyncio.TimeoutError:
            logging.warning(f"Sandbox timeout after {timeout}s, killing process group {process.pid}")
            await self._kill_tree(process)
            raise SandboxTimeout(argv, timeout)
        except asyncio.CancelledError:
            logging.warning(f"Sandbox cancelled, killing process group {process.pid}")
            await self._kill_tree(process)
            raise

        duration = time.monotonic() - start
        if capture.truncated:
            logging.warning(f"Sandbox output of '{argv[0]}' truncated at {cap} bytes")

        return SandboxResult(
            exit_code=process.returncode if process.returncode is not None else -1,
            output=capture.buffer.decode("utf-8", errors="replace"),
            truncated=capture.truncated,
            duration_seconds=duration,
        )

    @staticmethod
    def build_env(home: str, home_env_vars: Sequence[str] = ()) -> dict:
        env = {
            "PATH": os.environ.get("PATH", os.defpath),
            "HOME": home,
        }
        for var in home_env_vars:
            env[var] = home
        return env

    @staticmethod
    async def _collect(process, capture: _Capture) -> None:
        # Keep draining past the cap so the child never blocks on a full pipe.
        while True:
            chunk = await process.stdout.read(CHUNK_SIZE)
            if not chunk:
                break
            capture.feed(chunk)
        await process.wait()

    async def _kill_tree(self, process) -> None:
        # The group outlives its leader when grandchildren are still running.
        try:
            if os.name == "posix":
                os.killpg(process.pid, signal.SIGKILL)
            elif process.returncode is None:
                process.kill()
        except (ProcessLookupError, PermissionError):
            pass

        try:
            await asyncio.wait_for(process.wait(), timeout=self.grace_period)
        except asyncio.TimeoutError:
            logging.error(f"Process {process.pid} still alive {self.grace_period}s after SIGKILL")
