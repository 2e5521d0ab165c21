"""
Entry point of the isolated worker process.

Run as ``python -m pyscratch.sandbox.worker``. The worker applies its
resource limits, announces itself with a ready frame and then evaluates
requests read from stdin one at a time, writing output and result frames to
stdout. The namespace persists across requests for the lifetime of the
process.
"""
import argparse
import logging
import os
import sys

from pyscratch.config.defaults import SANDBOX_DEFAULTS
from pyscratch.config.logging import setup_logging, worker_log_format
from pyscratch.exceptions import ProtocolError
from pyscratch.printer import PrettyPrinter, RemoteError, create_identity_provider
from pyscratch.sandbox.channel import (
    CapturedOutput,
    EvaluationOutcome,
    decode_code,
    decode_frame,
    encode_frame,
    pack_value,
)
from pyscratch.sandbox.execution import ChannelEndpoint, build_namespace, evaluate

logger = logging.getLogger("pyscratch.sandbox.worker")


def set_resource_limits(max_memory_mb: int, max_cpu_time: int) -> None:
    """Apply address-space and CPU limits; 0 leaves a limit untouched."""
    try:
        import resource
    except ImportError:
        return
    if max_memory_mb > 0:
        memory_bytes = max_memory_mb * 1024 * 1024
        try:
            resource.setrlimit(resource.RLIMIT_AS, (memory_bytes, memory_bytes))
        except (ValueError, OSError):
            logger.warning("Could not apply memory limit")
    if max_cpu_time > 0:
        try:
            resource.setrlimit(resource.RLIMIT_CPU, (max_cpu_time, max_cpu_time))
        except (ValueError, OSError):
            logger.warning("Could not apply CPU time limit")


class Worker:
    """Reads request frames and answers them through the channel endpoint.

    The worker owns the session's identity provider, so every rendering it
    ships refers to the references living in this process.
    """

    def __init__(
        self,
        session_id: str,
        transport_in,
        transport_out,
        identity_backend: str = SANDBOX_DEFAULTS.identity_backend,
        frame_limit: int = SANDBOX_DEFAULTS.frame_limit,
    ):
        self.session_id = session_id
        self.frame_limit = frame_limit
        self._in = transport_in
        self._out = transport_out
        self.printer = PrettyPrinter(create_identity_provider(identity_backend))
        self.endpoint = ChannelEndpoint(session_id, self.printer, self._send_result, self._send_output)
        self.namespace = build_namespace(self.endpoint)

    def _write(self, frame: bytes) -> None:
        self._out.write(frame)
        self._out.flush()

    def _send(self, message: dict) -> None:
        self._write(encode_frame(message))

    def _fits(self, frame: bytes) -> bool:
        return len(frame) <= self.frame_limit

    def _send_result(self, outcome: EvaluationOutcome) -> None:
        message = {
            "type": "result",
            "session": outcome.session_id,
            "id": outcome.request_id,
            "error": outcome.is_error,
            "payload": pack_value(outcome.value),
            "text": outcome.text,
        }
        frame = encode_frame(message)
        if not self._fits(frame):
            logger.warning(f"Result of request {outcome.request_id} is {len(frame)} bytes, over the frame limit")
            error = RemoteError(
                "ResultTooLarge",
                f"result of {len(frame)} bytes exceeds the {self.frame_limit} byte frame limit",
            )
            message.update(error=True, payload=pack_value(error), text=self.printer.to_string(error))
            frame = encode_frame(message)
        self._write(frame)

    def _send_output(self, output: CapturedOutput) -> None:
        message = {
            "type": "output",
            "session": output.session_id,
            "id": output.request_id,
            "payload": pack_value(output.args),
            "text": output.text,
        }
        frame = encode_frame(message)
        if not self._fits(frame):
            notice = f"<output of {len(frame)} bytes dropped: exceeds the {self.frame_limit} byte frame limit>"
            message.update(payload=pack_value((notice,)), text=notice)
            frame = encode_frame(message)
        self._write(frame)

    def serve(self) -> None:
        self._send({"type": "ready", "session": self.session_id, "pid": os.getpid()})
        for line in self._in:
            try:
                message = decode_frame(line)
                if message["type"] == "shutdown":
                    break
                if message["type"] != "evaluate":
                    raise ProtocolError(f"Unexpected frame type: {message['type']}")
                code = decode_code(message.get("code", ""))
            except ProtocolError as e:
                logger.warning(f"Ignoring frame: {e}")
                continue
            evaluate(code, self.namespace, self.endpoint, message.get("id"))


def main(argv=None) -> None:
    parser = argparse.ArgumentParser(prog="pyscratch-worker")
    parser.add_argument("--session-id", required=True)
    parser.add_argument("--max-memory-mb", type=int, default=0)
    parser.add_argument("--max-cpu-time", type=int, default=0)
    parser.add_argument("--identity-backend", default=SANDBOX_DEFAULTS.identity_backend)
    parser.add_argument("--frame-limit", type=int, default=SANDBOX_DEFAULTS.frame_limit)
    parser.add_argument("--log-level", default="WARNING")
    args = parser.parse_args(argv)

    setup_logging(args.log_level, format_string=worker_log_format(args.session_id))

    # Frames own the real stdout; stray writes between requests go to stderr.
    transport_out = sys.stdout.buffer
    sys.stdout = sys.stderr

    set_resource_limits(args.max_memory_mb, args.max_cpu_time)
    Worker(
        args.session_id,
        sys.stdin.buffer,
        transport_out,
        identity_backend=args.identity_backend,
        frame_limit=args.frame_limit,
    ).serve()


if __name__ == "__main__":
    main()
