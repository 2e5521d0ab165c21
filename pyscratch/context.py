"""
Application context owning the sandbox, the current session and its printer.

Nothing here is global: whoever needs to evaluate code gets a ScratchContext
passed in. A context is what the editor talks to; it turns an outcome into
rendered text entries.
"""
import logging
from dataclasses import dataclass, field
from typing import List, Optional

from pyscratch.exceptions import SandboxError
from pyscratch.sandbox import (
    CapturedOutput,
    EvaluationOutcome,
    Sandbox,
    SandboxConfig,
    SandboxSession,
    create_sandbox,
)

logger = logging.getLogger(__name__)

RESULT = "result"
OUTPUT = "output"


@dataclass
class Entry:
    """One rendered block shown below the evaluated code."""
    kind: str  # RESULT or OUTPUT
    text: str


@dataclass
class Evaluation:
    code: str
    outcome: EvaluationOutcome
    outputs: List[Entry] = field(default_factory=list)
    result: Optional[Entry] = None

    @property
    def is_error(self) -> bool:
        return self.outcome.is_error

    @property
    def entries(self) -> List[Entry]:
        """Output entries in arrival order, followed by the result entry."""
        entries = list(self.outputs)
        if self.result is not None:
            entries.append(self.result)
        return entries


class ScratchContext:
    """Evaluates code for an editor and renders what comes back.

    Example:
        context = ScratchContext(SandboxConfig(level=SandboxLevel.NONE))
        await context.start()
        evaluation = await context.execute("2 + 2")
        evaluation.result.text  # "4"
        await context.close()
    """

    def __init__(self, config: Optional[SandboxConfig] = None, sandbox: Optional[Sandbox] = None):
        self.config = config or SandboxConfig()
        self.sandbox = sandbox or create_sandbox(self.config)
        self.session: Optional[SandboxSession] = None

    async def start(self) -> SandboxSession:
        if self.session is None or not self.session.is_ready:
            self.session = await self.sandbox.create()
        return self.session

    async def reset(self) -> SandboxSession:
        """Discard the current session and everything defined in it."""
        self.session = await self.sandbox.create(replace=self.session)
        return self.session

    async def close(self) -> None:
        if self.session is not None:
            await self.sandbox.dispose(self.session)
            self.session = None

    async def execute(self, code: str) -> Evaluation:
        """Evaluate code in the current session and render the outcome.

        Entries use the text rendered inside the sandbox, where the values
        live; output arguments come rendered in short mode and joined with a
        space. An absent result renders as an empty result entry.
        """
        if self.session is None:
            raise SandboxError("Context not started. Call start() first.")
        session = self.session
        outputs: List[Entry] = []

        def on_output(output: CapturedOutput) -> None:
            outputs.append(Entry(OUTPUT, output.text))

        outcome = await self.sandbox.evaluate(session, code, output_cb=on_output)
        if outcome.value is None and not outcome.is_error:
            text = ""
        elif outcome.text is not None:
            text = outcome.text
        else:
            text = session.printer.to_string(outcome.value)
        if outcome.is_error:
            logger.debug(f"Request {outcome.request_id} raised: {text}")
        return Evaluation(code, outcome, outputs, Entry(RESULT, text))
