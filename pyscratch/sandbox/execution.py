"""
Code evaluation shared by every sandbox backend.

The in-process backend and the subprocess worker both evaluate through
evaluate(), so a submission behaves the same whichever isolation level runs
it:

- The last statement, if it is an expression, is the result; otherwise the
  result is None.
- Anything raised by the code, SyntaxError and SystemExit included, is
  reported through the channel endpoint as an error, never propagated.
- print() and writes to sys.stdout are captured as output, in the order they
  were made.

Values are rendered by the session printer before they leave the endpoint,
so identity numbers always refer to the session's own references.
"""
import ast
import builtins
import io
import sys
from contextlib import redirect_stdout
from typing import Any, Callable, Dict, Optional

from pyscratch.printer import PrettyPrinter
from pyscratch.sandbox.channel import CapturedOutput, EvaluationOutcome

SCRATCH_FILENAME = "<scratch>"
SCRATCH_MODULE = "__scratch__"
CHANNEL_NAME = "__channel__"

SendResult = Callable[[EvaluationOutcome], None]
SendOutput = Callable[[CapturedOutput], None]


class ChannelEndpoint:
    """The designated object exposed inside an isolated namespace.

    It is the only way evaluated code reaches the host: result() and error()
    hand back the outcome of the current request, output() carries captured
    print arguments.
    """

    def __init__(
        self,
        session_id: str,
        printer: PrettyPrinter,
        send_result: SendResult,
        send_output: SendOutput,
    ):
        self.session_id = session_id
        self.printer = printer
        self.request_id: Optional[int] = None
        self.writer: Optional["ChannelWriter"] = None
        self._send_result = send_result
        self._send_output = send_output

    def result(self, value: Any) -> None:
        text = self.printer.to_string(value)
        self._send_result(EvaluationOutcome(self.request_id, value, False, self.session_id, text))

    def error(self, error: BaseException) -> None:
        text = self.printer.to_string(error)
        self._send_result(EvaluationOutcome(self.request_id, error, True, self.session_id, text))

    def output(self, *args: Any) -> None:
        text = " ".join(self.printer.to_string(arg, short=True) for arg in args)
        self._send_output(CapturedOutput(self.request_id, args, text, self.session_id))


class ChannelWriter(io.TextIOBase):
    """Text stream that turns every completed line into channel output."""

    def __init__(self, endpoint: ChannelEndpoint):
        super().__init__()
        self._endpoint = endpoint
        self._buffer = ""

    def writable(self) -> bool:
        return True

    def write(self, text: str) -> int:
        self._buffer += text
        while "\n" in self._buffer:
            line, self._buffer = self._buffer.split("\n", 1)
            self._endpoint.output(line)
        return len(text)

    def flush(self) -> None:
        if self._buffer:
            line, self._buffer = self._buffer, ""
            self._endpoint.output(line)


def _make_print(endpoint: ChannelEndpoint) -> Callable[..., None]:
    real_print = builtins.print

    def scratch_print(*args, sep=" ", end="\n", file=None, flush=False):
        if file is None or file is sys.stdout:
            # A partial line written to stdout comes first
            if endpoint.writer is not None:
                endpoint.writer.flush()
            endpoint.output(*args)
        else:
            real_print(*args, sep=sep, end=end, file=file, flush=flush)

    return scratch_print


def build_namespace(endpoint: ChannelEndpoint) -> Dict[str, Any]:
    """Create a fresh global namespace whose only host object is the endpoint."""
    scratch_builtins = dict(vars(builtins))
    scratch_builtins["print"] = _make_print(endpoint)
    return {
        "__name__": SCRATCH_MODULE,
        "__builtins__": scratch_builtins,
        CHANNEL_NAME: endpoint,
    }


def run_source(code: str, namespace: Dict[str, Any]) -> Any:
    """Execute code in namespace and return the value of a trailing expression."""
    tree = ast.parse(code, filename=SCRATCH_FILENAME, mode="exec")

    last_expression = None
    if tree.body and isinstance(tree.body[-1], ast.Expr):
        last_expression = ast.Expression(body=tree.body.pop().value)

    if tree.body:
        exec(compile(tree, SCRATCH_FILENAME, "exec"), namespace)
    if last_expression is not None:
        return eval(compile(last_expression, SCRATCH_FILENAME, "eval"), namespace)
    return None


def evaluate(code: str, namespace: Dict[str, Any], endpoint: ChannelEndpoint, request_id: int) -> None:
    """Run one request and report exactly one outcome through the endpoint."""
    endpoint.request_id = request_id
    writer = ChannelWriter(endpoint)
    endpoint.writer = writer
    try:
        with redirect_stdout(writer):
            value = run_source(code, namespace)
    except (Exception, SystemExit) as e:
        writer.flush()
        endpoint.error(e)
    else:
        writer.flush()
        endpoint.result(value)
    finally:
        endpoint.writer = None
