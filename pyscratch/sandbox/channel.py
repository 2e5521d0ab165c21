"""
Result channel bridging the isolation boundary.

Covers three concerns:

- Framing: every message crossing the boundary is a single line of ASCII
  JSON. Code travels base64-encoded, so quote delimiters and line breaks in
  the source can never break a frame.
- Value transport: outcomes and captured output are cloudpickled and base64
  encoded. Anything that refuses to pickle is replaced by an OpaqueValue (or
  a RemoteError for exceptions) instead of failing the evaluation.
- Correlation: each submission gets a request id and its own callback slot.
  Outcomes are delivered at most once, and only to the session that issued
  the request; anything else is a stale result and is dropped.
"""
import asyncio
import base64
import binascii
import json
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Union

import cloudpickle

from pyscratch.exceptions import ProtocolError, SandboxError, StaleResultError
from pyscratch.observability import (
    record_evaluation_completed,
    record_evaluation_submitted,
    record_evaluation_dropped,
    record_stale_result,
)
from pyscratch.printer.serializer import is_error
from pyscratch.printer.values import OpaqueValue, RemoteError

logger = logging.getLogger(__name__)

ResultCallback = Callable[["EvaluationOutcome"], None]
OutputCallback = Callable[["CapturedOutput"], None]


@dataclass(frozen=True)
class EvaluationOutcome:
    """The tagged result of one submission: a value, or a captured error.

    text is the value rendered by the session printer on the side where the
    value lives, so identities match the session's own references. It is None
    for outcomes produced by the host itself, e.g. after a worker crash.
    """
    request_id: int
    value: Any
    is_error: bool
    session_id: str
    text: Optional[str] = None


@dataclass(frozen=True)
class CapturedOutput:
    """The arguments of one print call, rendered in short mode when printed."""
    request_id: int
    args: tuple
    text: str
    session_id: str


# =============================================================================
# Framing
# =============================================================================


def encode_frame(message: Dict[str, Any]) -> bytes:
    """Encode a message as one newline-terminated line of ASCII JSON."""
    return (json.dumps(message, ensure_ascii=True) + "\n").encode("ascii")


def decode_frame(line: Union[bytes, str]) -> Dict[str, Any]:
    """Decode one frame.

    Raises:
        ProtocolError: If the line is not a JSON object with a "type" field.
    """
    if isinstance(line, bytes):
        try:
            line = line.decode("ascii")
        except UnicodeDecodeError as e:
            raise ProtocolError(f"Frame is not ASCII: {e}") from e
    try:
        message = json.loads(line)
    except json.JSONDecodeError as e:
        raise ProtocolError(f"Invalid frame: {e}", {"frame": line[:200]}) from e
    if not isinstance(message, dict) or "type" not in message:
        raise ProtocolError("Frame must be an object with a type", {"frame": line[:200]})
    return message


def encode_code(code: str) -> str:
    """Make source code transport safe (no quotes, no line breaks)."""
    return base64.b64encode(code.encode("utf-8")).decode("ascii")


def decode_code(encoded: str) -> str:
    try:
        return base64.b64decode(encoded.encode("ascii"), validate=True).decode("utf-8")
    except (binascii.Error, UnicodeError) as e:
        raise ProtocolError(f"Invalid code payload: {e}") from e


# =============================================================================
# Value transport
# =============================================================================


def _stand_in(value: Any) -> Any:
    type_name = type(value).__name__
    try:
        text = str(value) if is_error(value) else repr(value)
    except Exception:
        text = "<unprintable>"
    if is_error(value):
        return RemoteError(type_name, text)
    return OpaqueValue(type_name, text)


def _sanitize(value: Any, memo: Dict[int, Any]) -> Any:
    """Copy containers, replacing leaves that cannot be pickled.

    Shared references and cycles through lists, dicts and deques are kept;
    the memo maps id(original) to its copy.
    """
    key = id(value)
    if key in memo:
        return memo[key]

    if isinstance(value, list):
        copy = []
        memo[key] = copy
        copy.extend(_sanitize(item, memo) for item in value)
        return copy
    if isinstance(value, deque):
        copy = deque(maxlen=value.maxlen)
        memo[key] = copy
        copy.extend(_sanitize(item, memo) for item in value)
        return copy
    if isinstance(value, dict):
        copy = {}
        memo[key] = copy
        for item_key, item in value.items():
            copy[_sanitize(item_key, memo)] = _sanitize(item, memo)
        return copy
    if isinstance(value, (tuple, set, frozenset)):
        # Immutable: a cycle back to this node sees a stand-in
        memo[key] = _stand_in(value)
        items = [_sanitize(item, memo) for item in value]
        try:
            copy = type(value)(items) if not isinstance(value, tuple) else tuple(items)
        except TypeError:
            copy = _stand_in(value)
        memo[key] = copy
        return copy

    try:
        cloudpickle.dumps(value)
    except Exception:
        return _stand_in(value)
    return value


def pack_value(value: Any) -> str:
    """Serialize a value for transfer. Never raises."""
    try:
        data = cloudpickle.dumps(value)
    except Exception:
        logger.debug(f"Value of type {type(value).__name__} needs sanitizing before transfer")
        try:
            data = cloudpickle.dumps(_sanitize(value, {}))
        except Exception:
            data = cloudpickle.dumps(_stand_in(value))
    return base64.b64encode(data).decode("ascii")


def unpack_value(payload: str) -> Any:
    """Inverse of pack_value. A payload that fails to load becomes an OpaqueValue."""
    try:
        return cloudpickle.loads(base64.b64decode(payload))
    except Exception as e:
        logger.warning(f"Could not load transported value: {e}")
        return OpaqueValue("unavailable", f"<could not load value: {e}>")


# =============================================================================
# Correlation
# =============================================================================


@dataclass
class PendingRequest:
    request_id: int
    future: asyncio.Future
    result_cb: Optional[ResultCallback] = None
    output_cb: Optional[OutputCallback] = None
    submitted_at: float = field(default_factory=time.monotonic)


class ResultChannel:
    """Per-session table of in-flight requests.

    Every submission owns a slot keyed by its request id, so several requests
    may be in flight without overwriting each other's callbacks.
    """

    def __init__(self, session_id: str):
        self.session_id = session_id
        self._pending: Dict[int, PendingRequest] = {}
        self._last_request_id = 0
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def in_flight(self) -> int:
        return len(self._pending)

    def open(
        self,
        result_cb: Optional[ResultCallback] = None,
        output_cb: Optional[OutputCallback] = None,
    ) -> PendingRequest:
        """Allocate a request id and bind the caller's callbacks to it."""
        if self._closed:
            raise SandboxError("Result channel is closed", {"session_id": self.session_id})
        self._last_request_id += 1
        pending = PendingRequest(
            request_id=self._last_request_id,
            future=asyncio.get_running_loop().create_future(),
            result_cb=result_cb,
            output_cb=output_cb,
        )
        self._pending[pending.request_id] = pending
        record_evaluation_submitted()
        return pending

    def wait(self, request_id: int) -> asyncio.Future:
        """Future resolved with the request's outcome; cancelled on close()."""
        try:
            return self._pending[request_id].future
        except KeyError:
            raise SandboxError(
                f"No pending request {request_id}",
                {"session_id": self.session_id, "request_id": request_id},
            ) from None

    def _claim(self, session_id: str, request_id: int) -> PendingRequest:
        if self._closed or session_id != self.session_id:
            raise StaleResultError(session_id, request_id)
        pending = self._pending.get(request_id)
        if pending is None:
            raise StaleResultError(session_id, request_id)
        return pending

    def deliver(self, outcome: EvaluationOutcome) -> bool:
        """Hand an outcome to its request. Returns False if it was dropped."""
        try:
            pending = self._claim(outcome.session_id, outcome.request_id)
        except StaleResultError as e:
            logger.debug(f"Dropping outcome: {e}")
            record_stale_result()
            return False

        del self._pending[outcome.request_id]
        record_evaluation_completed(outcome.is_error, time.monotonic() - pending.submitted_at)
        if not pending.future.done():
            pending.future.set_result(outcome)
        if pending.result_cb is not None:
            try:
                pending.result_cb(outcome)
            except Exception:
                logger.exception(f"Result callback for request {outcome.request_id} failed")
        return True

    def emit_output(self, output: CapturedOutput) -> bool:
        """Route captured output to the request's output callback."""
        try:
            pending = self._claim(output.session_id, output.request_id)
        except StaleResultError as e:
            logger.debug(f"Dropping output: {e}")
            record_stale_result()
            return False

        if pending.output_cb is not None:
            try:
                pending.output_cb(output)
            except Exception:
                logger.exception(f"Output callback for request {output.request_id} failed")
        return True

    def fail_pending(self, error: BaseException) -> int:
        """Resolve every in-flight request with the same error outcome."""
        failed = 0
        for request_id in list(self._pending):
            outcome = EvaluationOutcome(request_id, error, True, self.session_id)
            if self.deliver(outcome):
                failed += 1
        return failed

    def close(self) -> None:
        """Drop all pending requests. Their callbacks never fire."""
        self._closed = True
        for pending in self._pending.values():
            pending.future.cancel()
            record_evaluation_dropped()
        if self._pending:
            logger.debug(f"Session {self.session_id}: dropped {len(self._pending)} pending request(s)")
        self._pending.clear()
