"""
In-process sandbox: a fresh restricted namespace per session.

Evaluated code cannot see host variables, only the builtins and the channel
endpoint placed in its namespace. This level isolates state, not resources:
code runs on the host's interpreter and event loop thread, between other
callbacks, so a long-running submission blocks the loop until it finishes.
"""
import asyncio
import logging
from typing import Any, Dict, Set, Tuple

from pyscratch.sandbox.base import Sandbox, SandboxLevel, SandboxSession
from pyscratch.sandbox.channel import EvaluationOutcome
from pyscratch.sandbox.execution import ChannelEndpoint, build_namespace, evaluate

logger = logging.getLogger(__name__)


class InProcessSandbox(Sandbox):
    """Evaluate code in a per-session namespace on the running event loop."""

    level = SandboxLevel.NONE

    def __init__(self, config=None):
        super().__init__(config)
        self._contexts: Dict[str, Tuple[Dict[str, Any], ChannelEndpoint]] = {}
        self._scheduled: Dict[str, Set[asyncio.Handle]] = {}

    async def _start(self, session: SandboxSession) -> None:
        loop = asyncio.get_running_loop()
        channel = session.channel

        def send_result(outcome: EvaluationOutcome) -> None:
            loop.call_soon(channel.deliver, outcome)

        endpoint = ChannelEndpoint(session.session_id, session.printer, send_result, channel.emit_output)
        self._contexts[session.session_id] = (build_namespace(endpoint), endpoint)
        self._scheduled[session.session_id] = set()

    def _send(self, session: SandboxSession, request_id: int, code: str) -> None:
        loop = asyncio.get_running_loop()
        scheduled = self._scheduled[session.session_id]
        handle = None

        def run() -> None:
            scheduled.discard(handle)
            context = self._contexts.get(session.session_id)
            if context is None:
                logger.debug(f"Session {session.session_id} is gone, skipping request {request_id}")
                return
            namespace, endpoint = context
            evaluate(code, namespace, endpoint, request_id)

        handle = loop.call_soon(run)
        scheduled.add(handle)

    async def _stop(self, session: SandboxSession) -> None:
        for handle in self._scheduled.pop(session.session_id, set()):
            handle.cancel()
        self._contexts.pop(session.session_id, None)
