"""
Subprocess-based sandbox execution.

Each session is a separate Python process running pyscratch.sandbox.worker
with resource limits applied. The host talks to it over the worker's
stdin/stdout with line frames (see pyscratch.sandbox.channel); a reader task
per session decodes incoming frames and hands them to the session's result
channel.

Values are rendered by the worker's session printer and travel as text next
to their pickled copy, so identity numbers refer to the worker's references.
The worker keeps every frame within SandboxConfig.frame_limit, replacing an
oversized result with a ResultTooLarge error.
"""
import asyncio
import logging
import os
import signal
import subprocess
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional

from pyscratch.exceptions import ProtocolError, SandboxSetupError
from pyscratch.printer.values import RemoteError
from pyscratch.sandbox.base import Sandbox, SandboxLevel, SandboxSession, SessionState
from pyscratch.sandbox.channel import (
    CapturedOutput,
    EvaluationOutcome,
    decode_frame,
    encode_code,
    encode_frame,
    unpack_value,
)

logger = logging.getLogger(__name__)

WORKER_MODULE = "pyscratch.sandbox.worker"


@dataclass
class _WorkerHandle:
    process: asyncio.subprocess.Process
    reader: Optional[asyncio.Task] = None


def _worker_env() -> Dict[str, str]:
    env = os.environ.copy()
    project_root = str(Path(__file__).resolve().parents[2])
    existing_pythonpath = env.get("PYTHONPATH", "")
    env["PYTHONPATH"] = (
        f"{project_root}{os.pathsep}{existing_pythonpath}"
        if existing_pythonpath
        else project_root
    )
    return env


def _kill(process: asyncio.subprocess.Process) -> None:
    if process.returncode is not None:
        return
    try:
        if hasattr(os, "killpg"):
            os.killpg(os.getpgid(process.pid), signal.SIGKILL)
        else:
            process.kill()
    except ProcessLookupError:
        pass


class SubprocessSandbox(Sandbox):
    """Execute code in an isolated worker process per session."""

    level = SandboxLevel.SUBPROCESS

    def __init__(self, config=None):
        super().__init__(config)
        self._workers: Dict[str, _WorkerHandle] = {}

    def _command(self, session: SandboxSession) -> list:
        return [
            sys.executable, "-m", WORKER_MODULE,
            "--session-id", session.session_id,
            "--max-memory-mb", str(self.config.max_memory_mb),
            "--max-cpu-time", str(self.config.max_cpu_time),
            "--identity-backend", self.config.identity_backend,
            "--frame-limit", str(self.config.frame_limit),
            "--log-level", logging.getLevelName(logger.getEffectiveLevel()),
        ]

    async def _start(self, session: SandboxSession) -> None:
        try:
            process = await asyncio.create_subprocess_exec(
                *self._command(session),
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                env=_worker_env(),
                start_new_session=True,
                limit=self.config.frame_limit,
            )
        except OSError as e:
            raise SandboxSetupError(f"could not spawn worker: {e}", session.session_id) from e

        try:
            line = await asyncio.wait_for(process.stdout.readline(), timeout=self.config.startup_timeout)
        except asyncio.TimeoutError:
            _kill(process)
            await process.wait()
            raise SandboxSetupError(
                f"no ready signal within {self.config.startup_timeout}s", session.session_id
            ) from None

        if not line:
            returncode = await process.wait()
            raise SandboxSetupError(f"worker exited with code {returncode}", session.session_id)

        try:
            message = decode_frame(line)
        except ProtocolError as e:
            _kill(process)
            await process.wait()
            raise SandboxSetupError(f"bad ready frame: {e}", session.session_id) from e
        if message["type"] != "ready" or message.get("session") != session.session_id:
            _kill(process)
            await process.wait()
            raise SandboxSetupError(f"unexpected first frame: {message['type']}", session.session_id)

        handle = _WorkerHandle(process)
        handle.reader = asyncio.create_task(self._read_frames(session, handle))
        self._workers[session.session_id] = handle
        logger.debug(f"Worker pid={message.get('pid')} serving session {session.session_id}")

    def _send(self, session: SandboxSession, request_id: int, code: str) -> None:
        handle = self._workers[session.session_id]
        handle.process.stdin.write(encode_frame({
            "type": "evaluate",
            "id": request_id,
            "code": encode_code(code),
        }))

    async def _stop(self, session: SandboxSession) -> None:
        handle = self._workers.pop(session.session_id, None)
        if handle is None:
            return
        if handle.reader is not None:
            handle.reader.cancel()
        _kill(handle.process)
        await handle.process.wait()
        if handle.reader is not None:
            try:
                await handle.reader
            except asyncio.CancelledError:
                pass

    async def _read_frames(self, session: SandboxSession, handle: _WorkerHandle) -> None:
        stdout = handle.process.stdout
        while True:
            try:
                line = await stdout.readline()
            except ValueError as e:
                logger.warning(f"Session {session.session_id}: dropping oversized frame: {e}")
                continue
            if not line:
                break
            try:
                message = decode_frame(line)
            except ProtocolError as e:
                logger.warning(f"Session {session.session_id}: {e}")
                continue
            self._dispatch(session, message)

        # The worker went away on its own (crash, CPU limit, os._exit).
        returncode = await handle.process.wait()
        if session.state != SessionState.READY:
            return
        logger.warning(f"Worker for session {session.session_id} exited with code {returncode}")
        session.channel.fail_pending(
            RemoteError("SandboxCrashed", f"sandbox worker exited with code {returncode}")
        )
        self._workers.pop(session.session_id, None)
        await self.dispose(session)

    def _dispatch(self, session: SandboxSession, message: dict) -> None:
        kind = message["type"]
        session_id = message.get("session", "")
        request_id = message.get("id")
        if kind == "result":
            outcome = EvaluationOutcome(
                request_id=request_id,
                value=unpack_value(message.get("payload", "")),
                is_error=bool(message.get("error")),
                session_id=session_id,
                text=message.get("text"),
            )
            session.channel.deliver(outcome)
        elif kind == "output":
            args = unpack_value(message.get("payload", ""))
            if not isinstance(args, tuple):
                args = (args,)
            output = CapturedOutput(request_id, args, message.get("text") or "", session_id)
            session.channel.emit_output(output)
        else:
            logger.warning(f"Session {session.session_id}: unexpected frame type {kind}")
