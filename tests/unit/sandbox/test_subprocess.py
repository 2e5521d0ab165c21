"""
Unit tests for the subprocess sandbox. These spawn real worker processes.
"""
import asyncio
import platform
import sys

import pytest

from pyscratch.context import ScratchContext
from pyscratch.exceptions import SandboxSetupError
from pyscratch.printer import OpaqueValue, RemoteError, WeakIdentityProvider
from pyscratch.sandbox import (
    SandboxConfig,
    SandboxLevel,
    SandboxSession,
    SessionState,
    SubprocessSandbox,
    create_sandbox,
    pack_value,
)

pytestmark = [
    pytest.mark.subprocess,
    pytest.mark.skipif(platform.system() == "Windows", reason="worker processes use POSIX process groups"),
]


async def _evaluate_all(config, *codes, output_cb=None):
    sandbox = SubprocessSandbox(config)
    session = await sandbox.create()
    try:
        return [await sandbox.evaluate(session, code, output_cb=output_cb) for code in codes]
    finally:
        await sandbox.dispose(session)


class _CommandSandbox(SubprocessSandbox):
    """Runs an arbitrary command in place of the worker."""

    def __init__(self, config, command):
        super().__init__(config)
        self._fake_command = command

    def _command(self, session):
        return self._fake_command


class TestSubprocessSandbox:
    def test_factory_selects_subprocess(self, subprocess_config):
        assert isinstance(create_sandbox(subprocess_config), SubprocessSandbox)

    def test_evaluate_expression(self, subprocess_config):
        [outcome] = asyncio.run(_evaluate_all(subprocess_config, "2 + 2"))
        assert outcome.value == 4
        assert outcome.is_error is False

    def test_state_persists_within_session(self, subprocess_config):
        outcomes = asyncio.run(_evaluate_all(subprocess_config, "x = 21", "x * 2"))
        assert [o.value for o in outcomes] == [None, 42]

    def test_error_outcome(self, subprocess_config):
        [outcome] = asyncio.run(_evaluate_all(subprocess_config, "1 / 0"))
        assert outcome.is_error is True
        assert isinstance(outcome.value, ZeroDivisionError)

    def test_print_output(self, subprocess_config):
        seen = []
        [outcome] = asyncio.run(_evaluate_all(
            subprocess_config, "print('hi', [1])\n5", output_cb=lambda output: seen.append(output.args)
        ))
        assert seen == [("hi", [1])]
        assert outcome.value == 5

    def test_cycle_survives_transfer(self, subprocess_config):
        [outcome] = asyncio.run(_evaluate_all(subprocess_config, "v = [1]\nv.append(v)\nv"))
        assert outcome.value[1] is outcome.value

    def test_generator_becomes_opaque(self, subprocess_config):
        [outcome] = asyncio.run(_evaluate_all(subprocess_config, "(i for i in range(3))"))
        assert isinstance(outcome.value, OpaqueValue)
        assert outcome.value.type_name == "generator"
        assert outcome.text.startswith("generator <generator object")

    def test_function_is_rendered(self, subprocess_config):
        async def run():
            sandbox = SubprocessSandbox(subprocess_config)
            session = await sandbox.create()
            outcome = await sandbox.evaluate(session, "def double(n):\n    return n * 2\ndouble")
            await sandbox.dispose(session)
            return outcome

        outcome = asyncio.run(run())
        assert outcome.value(4) == 8
        assert "double" in outcome.text

    def test_dispose_discards_running_request(self, subprocess_config):
        async def run():
            sandbox = SubprocessSandbox(subprocess_config)
            session = await sandbox.create()
            stale = []
            sandbox.submit(session, "import time\ntime.sleep(30)", stale.append)
            await asyncio.sleep(0.2)
            await asyncio.wait_for(sandbox.dispose(session), timeout=10)
            return stale, session.state

        stale, state = asyncio.run(run())
        assert stale == []
        assert state == SessionState.DISPOSED

    def test_worker_crash_fails_pending_and_disposes(self, subprocess_config):
        async def run():
            sandbox = SubprocessSandbox(subprocess_config)
            session = await sandbox.create()
            outcome = await sandbox.evaluate(session, "import os\nos._exit(3)")
            return outcome, session.state

        outcome, state = asyncio.run(run())
        assert outcome.is_error is True
        assert isinstance(outcome.value, RemoteError)
        assert outcome.value.type_name == "SandboxCrashed"
        assert "code 3" in outcome.value.message
        assert state == SessionState.DISPOSED


class TestIdentityInWorker:
    def test_same_reference_keeps_identity_across_submissions(self, subprocess_config):
        outcomes = asyncio.run(_evaluate_all(subprocess_config, "a = [1]\na", "{}", "a"))
        assert outcomes[0].text.startswith("list:1 [")
        assert outcomes[1].text.startswith("dict:2 {")
        assert outcomes[2].text == outcomes[0].text

    def test_printed_and_returned_reference_share_identity(self, subprocess_config):
        async def run():
            context = ScratchContext(subprocess_config)
            await context.start()
            try:
                await context.execute("a = [1]")
                first = await context.execute("a")
                second = await context.execute("print(a)\na")
            finally:
                await context.close()
            return first, second

        first, second = asyncio.run(run())
        assert first.result.text.startswith("list:1 [")
        assert second.outputs[0].text.startswith("list:1 [")
        assert second.result.text.startswith("list:1 [")

    def test_host_provider_stays_empty(self, subprocess_config):
        async def run():
            sandbox = SubprocessSandbox(subprocess_config)
            session = await sandbox.create()
            await sandbox.evaluate(session, "[[1], {'k': [2]}]")
            size = len(session.identities)
            await sandbox.dispose(session)
            return size

        assert asyncio.run(run()) == 0


class TestFrameLimit:
    def test_oversized_result_becomes_error(self):
        config = SandboxConfig(level=SandboxLevel.SUBPROCESS, startup_timeout=30, frame_limit=4096)

        async def run():
            sandbox = SubprocessSandbox(config)
            session = await sandbox.create()
            try:
                too_large = await asyncio.wait_for(sandbox.evaluate(session, "'x' * 100000"), timeout=10)
                after = await asyncio.wait_for(sandbox.evaluate(session, "1 + 1"), timeout=10)
            finally:
                await sandbox.dispose(session)
            return too_large, after

        too_large, after = asyncio.run(run())
        assert too_large.is_error is True
        assert isinstance(too_large.value, RemoteError)
        assert too_large.value.type_name == "ResultTooLarge"
        assert too_large.text.startswith("ResultTooLarge: result of")
        assert after.value == 2

    def test_oversized_output_is_replaced_by_notice(self):
        config = SandboxConfig(level=SandboxLevel.SUBPROCESS, startup_timeout=30, frame_limit=4096)
        seen = []

        [outcome] = asyncio.run(_evaluate_all(
            config, "print('y' * 100000)\n'ok'", output_cb=lambda output: seen.append(output.text)
        ))
        assert outcome.value == "ok"
        assert len(seen) == 1
        assert seen[0].startswith("<output of")
        assert "frame limit" in seen[0]


class TestSetupFailure:
    def test_worker_exits_before_ready(self):
        config = SandboxConfig(level=SandboxLevel.SUBPROCESS)
        sandbox = _CommandSandbox(config, [sys.executable, "-c", "import sys; sys.exit(4)"])

        with pytest.raises(SandboxSetupError, match="exited with code 4"):
            asyncio.run(sandbox.create())

    def test_no_ready_signal(self):
        config = SandboxConfig(level=SandboxLevel.SUBPROCESS, startup_timeout=0.5)
        sandbox = _CommandSandbox(config, [sys.executable, "-c", "import time; time.sleep(30)"])

        with pytest.raises(SandboxSetupError, match="no ready signal"):
            asyncio.run(sandbox.create())

    def test_bad_ready_frame(self):
        config = SandboxConfig(level=SandboxLevel.SUBPROCESS)
        sandbox = _CommandSandbox(config, [sys.executable, "-c", "print('hello')"])

        with pytest.raises(SandboxSetupError, match="bad ready frame"):
            asyncio.run(sandbox.create())


class TestDispatch:
    def test_frames_from_another_session_are_dropped(self):
        async def run():
            sandbox = SubprocessSandbox(SandboxConfig())
            session = SandboxSession(WeakIdentityProvider(), session_id="current")
            received = []
            pending = session.channel.open(received.append)
            frame = {"type": "result", "id": pending.request_id, "error": False, "payload": pack_value(7)}
            sandbox._dispatch(session, dict(frame, session="previous"))
            stale = list(received)
            sandbox._dispatch(session, dict(frame, session="current"))
            return stale, received

        stale, received = asyncio.run(run())
        assert stale == []
        assert [o.value for o in received] == [7]

    def test_output_frame(self):
        async def run():
            sandbox = SubprocessSandbox(SandboxConfig())
            session = SandboxSession(WeakIdentityProvider(), session_id="current")
            seen = []
            pending = session.channel.open(output_cb=seen.append)
            sandbox._dispatch(session, {
                "type": "output",
                "session": "current",
                "id": pending.request_id,
                "payload": pack_value(("line",)),
                "text": "line",
            })
            return seen

        [output] = asyncio.run(run())
        assert (output.args, output.text) == (("line",), "line")
