"""
pyscratch - Evaluate Python code in a sandbox and render results as text.
"""
from pyscratch.context import ScratchContext, Evaluation, Entry
from pyscratch.printer import PrettyPrinter, to_string
from pyscratch.sandbox import (
    SandboxConfig,
    SandboxLevel,
    EvaluationOutcome,
    create_sandbox,
)
from pyscratch.transcript import Transcript

__version__ = "0.1.0"

__all__ = [
    "ScratchContext",
    "Evaluation",
    "Entry",
    "PrettyPrinter",
    "to_string",
    "SandboxConfig",
    "SandboxLevel",
    "EvaluationOutcome",
    "create_sandbox",
    "Transcript",
]
