"""
Base types and lifecycle shared by all sandbox implementations.

A Sandbox spawns isolated sessions, accepts code for a session and delivers
exactly one outcome per submission, asynchronously, on the caller's event
loop. Backends only implement how a session is started, how a request is
handed to it and how it is stopped; lifecycle bookkeeping lives here.
"""
import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from pyscratch.config.defaults import SANDBOX_DEFAULTS
from pyscratch.exceptions import SandboxSetupError, SessionNotReadyError
from pyscratch.observability import record_session_event
from pyscratch.printer import IdentityProvider, PrettyPrinter, create_identity_provider
from pyscratch.sandbox.channel import (
    EvaluationOutcome,
    OutputCallback,
    ResultCallback,
    ResultChannel,
)

logger = logging.getLogger(__name__)


class SandboxLevel(str, Enum):
    """Sandbox isolation levels."""
    NONE = "none"
    SUBPROCESS = "subprocess"


class SessionState(str, Enum):
    UNINITIALIZED = "uninitialized"
    READY = "ready"
    DISPOSED = "disposed"


@dataclass
class SandboxConfig:
    level: SandboxLevel = SandboxLevel(SANDBOX_DEFAULTS.level)
    startup_timeout: float = SANDBOX_DEFAULTS.startup_timeout
    max_memory_mb: int = SANDBOX_DEFAULTS.max_memory_mb
    max_cpu_time: int = SANDBOX_DEFAULTS.max_cpu_time
    frame_limit: int = SANDBOX_DEFAULTS.frame_limit
    identity_backend: str = SANDBOX_DEFAULTS.identity_backend


class SandboxSession:
    """One isolated execution context and everything scoped to it.

    The session owns its result channel and its identity provider, so
    identities and pending callbacks never leak from one session into the
    next.
    """

    def __init__(self, identities: IdentityProvider, session_id: Optional[str] = None):
        self.session_id = session_id or uuid.uuid4().hex
        self.state = SessionState.UNINITIALIZED
        self.channel = ResultChannel(self.session_id)
        self.identities = identities
        self.printer = PrettyPrinter(identities)

    @property
    def is_ready(self) -> bool:
        return self.state == SessionState.READY

    def __repr__(self) -> str:
        return f"SandboxSession(session_id={self.session_id!r}, state={self.state.value})"


class Sandbox(ABC):
    """Spawns sessions, submits code to them and tears them down."""

    level: SandboxLevel

    def __init__(self, config: Optional[SandboxConfig] = None):
        self.config = config or SandboxConfig(level=self.level)

    async def create(self, replace: Optional[SandboxSession] = None) -> SandboxSession:
        """Bring up a fresh session, disposing `replace` first if given.

        Raises:
            SandboxSetupError: If the isolated context fails to initialize.
        """
        if replace is not None:
            await self.dispose(replace)

        session = SandboxSession(create_identity_provider(self.config.identity_backend))
        try:
            await self._start(session)
        except SandboxSetupError:
            session.state = SessionState.DISPOSED
            session.channel.close()
            record_session_event(self.level.value, "failed")
            raise

        session.state = SessionState.READY
        record_session_event(self.level.value, "created")
        logger.info(f"Sandbox session {session.session_id} ready (level={self.level.value})")
        return session

    def submit(
        self,
        session: SandboxSession,
        code: str,
        result_cb: Optional[ResultCallback] = None,
        output_cb: Optional[OutputCallback] = None,
    ) -> int:
        """Submit code for evaluation and return its request id immediately.

        The outcome is passed to result_cb later on the running event loop;
        each captured print is passed to output_cb as a CapturedOutput.

        Raises:
            SessionNotReadyError: If the session is not ready.
        """
        if not session.is_ready:
            raise SessionNotReadyError(session.session_id, session.state.value)
        pending = session.channel.open(result_cb, output_cb)
        logger.debug(f"Session {session.session_id}: submitting request {pending.request_id}")
        self._send(session, pending.request_id, code)
        return pending.request_id

    async def evaluate(
        self,
        session: SandboxSession,
        code: str,
        output_cb: Optional[OutputCallback] = None,
    ) -> EvaluationOutcome:
        """Submit code and wait for its outcome.

        Raises:
            asyncio.CancelledError: If the session is disposed first.
        """
        request_id = self.submit(session, code, output_cb=output_cb)
        return await session.channel.wait(request_id)

    async def dispose(self, session: SandboxSession) -> None:
        """Tear down a session; outcomes still in flight are discarded."""
        if session.state == SessionState.DISPOSED:
            return
        previous = session.state
        session.state = SessionState.DISPOSED
        session.channel.close()
        if previous != SessionState.UNINITIALIZED:
            await self._stop(session)
        session.identities.reset()
        record_session_event(self.level.value, "disposed")
        logger.info(f"Sandbox session {session.session_id} disposed")

    @abstractmethod
    async def _start(self, session: SandboxSession) -> None:
        """Start the isolated context; raise SandboxSetupError on failure."""
        pass

    @abstractmethod
    def _send(self, session: SandboxSession, request_id: int, code: str) -> None:
        """Hand a request to the session without waiting for it."""
        pass

    @abstractmethod
    async def _stop(self, session: SandboxSession) -> None:
        """Release the isolated context."""
        pass
