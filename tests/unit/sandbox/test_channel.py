"""
Unit tests for the result channel: framing, value transport and correlation.
"""
import asyncio

import pytest

from pyscratch.exceptions import ProtocolError, SandboxError
from pyscratch.printer import OpaqueValue, RemoteError
from pyscratch.sandbox import (
    CapturedOutput,
    EvaluationOutcome,
    ResultChannel,
    decode_code,
    decode_frame,
    encode_code,
    encode_frame,
    pack_value,
    unpack_value,
)


class TestFraming:
    def test_frame_is_one_ascii_line(self):
        frame = encode_frame({"type": "output", "payload": "héllo\nworld"})
        assert frame.endswith(b"\n")
        assert frame.count(b"\n") == 1
        frame.decode("ascii")

    def test_decode_frame(self):
        message = decode_frame(encode_frame({"type": "ready", "session": "abc"}))
        assert message == {"type": "ready", "session": "abc"}

    def test_decode_frame_accepts_text(self):
        assert decode_frame('{"type": "shutdown"}') == {"type": "shutdown"}

    @pytest.mark.parametrize("line", [b"not json\n", b"[1, 2]\n", b'{"id": 1}\n', b"\xff\n"])
    def test_decode_invalid_frame(self, line):
        with pytest.raises(ProtocolError):
            decode_frame(line)


class TestCodeTransport:
    def test_encoded_code_has_no_quotes_or_line_breaks(self):
        code = 'print("a")\nx = \'b\'\n"""doc"""'
        encoded = encode_code(code)
        assert "\n" not in encoded
        assert '"' not in encoded and "'" not in encoded
        assert decode_code(encoded) == code

    def test_non_ascii_code(self):
        assert decode_code(encode_code("s = 'ünïcode'")) == "s = 'ünïcode'"

    def test_invalid_code_payload(self):
        with pytest.raises(ProtocolError, match="Invalid code payload"):
            decode_code("not base64!")


class TestValueTransport:
    def test_plain_values(self):
        assert unpack_value(pack_value({"a": [1, 2.5, "x"]})) == {"a": [1, 2.5, "x"]}
        assert unpack_value(pack_value(None)) is None

    def test_cycle_is_preserved(self):
        value = [1]
        value.append(value)
        copy = unpack_value(pack_value(value))
        assert copy[0] == 1
        assert copy[1] is copy

    def test_function_travels(self):
        square = unpack_value(pack_value(lambda x: x * x))
        assert square(3) == 9

    def test_generator_becomes_opaque(self):
        copy = unpack_value(pack_value(i for i in range(3)))
        assert isinstance(copy, OpaqueValue)
        assert copy.type_name == "generator"
        assert copy.text.startswith("<generator object")

    def test_unpicklable_leaf_keeps_container_and_cycle(self):
        value = [(i for i in range(3)), "kept"]
        value.append(value)
        copy = unpack_value(pack_value(value))
        assert isinstance(copy[0], OpaqueValue)
        assert copy[1] == "kept"
        assert copy[2] is copy

    def test_unpicklable_exception_becomes_remote_error(self):
        error = ValueError("bad input")
        error.source = (i for i in range(3))
        copy = unpack_value(pack_value(error))
        assert isinstance(copy, RemoteError)
        assert copy.type_name == "ValueError"
        assert copy.message == "bad input"

    def test_bad_payload_becomes_opaque(self):
        copy = unpack_value("AAAA")
        assert isinstance(copy, OpaqueValue)
        assert copy.type_name == "unavailable"


def _outcome(channel, request_id, value=None, is_error=False, session_id=None):
    return EvaluationOutcome(request_id, value, is_error, session_id or channel.session_id)


class TestResultChannel:
    def test_open_assigns_increasing_ids(self):
        async def run():
            channel = ResultChannel("s1")
            first = channel.open()
            second = channel.open()
            return first.request_id, second.request_id, channel.in_flight

        assert asyncio.run(run()) == (1, 2, 2)

    def test_deliver_invokes_callback_once(self):
        async def run():
            channel = ResultChannel("s1")
            received = []
            pending = channel.open(received.append)
            outcome = _outcome(channel, pending.request_id, 4)
            assert channel.deliver(outcome) is True
            assert channel.deliver(outcome) is False
            assert (await pending.future) is outcome
            return received, channel.in_flight

        received, in_flight = asyncio.run(run())
        assert [outcome.value for outcome in received] == [4]
        assert in_flight == 0

    def test_outcome_from_other_session_is_dropped(self):
        async def run():
            channel = ResultChannel("s1")
            received = []
            pending = channel.open(received.append)
            delivered = channel.deliver(_outcome(channel, pending.request_id, 1, session_id="s0"))
            return delivered, received, channel.in_flight

        assert asyncio.run(run()) == (False, [], 1)

    def test_unknown_request_is_dropped(self):
        async def run():
            channel = ResultChannel("s1")
            return channel.deliver(_outcome(channel, 99, 1))

        assert asyncio.run(run()) is False

    def test_multiple_requests_in_flight_keep_their_callbacks(self):
        async def run():
            channel = ResultChannel("s1")
            first, second = [], []
            a = channel.open(first.append)
            b = channel.open(second.append)
            channel.deliver(_outcome(channel, b.request_id, "b"))
            channel.deliver(_outcome(channel, a.request_id, "a"))
            return first, second

        first, second = asyncio.run(run())
        assert [o.value for o in first] == ["a"]
        assert [o.value for o in second] == ["b"]

    def test_close_discards_pending(self):
        async def run():
            channel = ResultChannel("s1")
            received = []
            pending = channel.open(received.append)
            channel.close()
            delivered = channel.deliver(_outcome(channel, pending.request_id, 1))
            return delivered, received, pending.future.cancelled(), channel.closed

        assert asyncio.run(run()) == (False, [], True, True)

    def test_open_after_close_raises(self):
        async def run():
            channel = ResultChannel("s1")
            channel.close()
            channel.open()

        with pytest.raises(SandboxError, match="closed"):
            asyncio.run(run())

    def test_wait_unknown_request_raises(self):
        async def run():
            ResultChannel("s1").wait(5)

        with pytest.raises(SandboxError, match="No pending request 5"):
            asyncio.run(run())

    def test_emit_output_routes_to_request(self):
        async def run():
            channel = ResultChannel("s1")
            seen = []
            pending = channel.open(output_cb=seen.append)
            assert channel.emit_output(CapturedOutput(pending.request_id, ("a", 1), "a 1", "s1"))
            assert not channel.emit_output(CapturedOutput(pending.request_id, ("stale",), "stale", "s0"))
            return seen

        seen = asyncio.run(run())
        assert [(output.args, output.text) for output in seen] == [(("a", 1), "a 1")]

    def test_fail_pending(self):
        async def run():
            channel = ResultChannel("s1")
            received = []
            channel.open(received.append)
            channel.open(received.append)
            failed = channel.fail_pending(RemoteError("SandboxCrashed", "gone"))
            return failed, received, channel.in_flight

        failed, received, in_flight = asyncio.run(run())
        assert failed == 2
        assert in_flight == 0
        assert all(o.is_error and o.value.type_name == "SandboxCrashed" for o in received)

    def test_raising_callback_does_not_break_delivery(self):
        def explode(outcome):
            raise RuntimeError("callback failed")

        async def run():
            channel = ResultChannel("s1")
            pending = channel.open(explode)
            delivered = channel.deliver(_outcome(channel, pending.request_id, 1))
            return delivered, (await pending.future).value

        assert asyncio.run(run()) == (True, 1)
