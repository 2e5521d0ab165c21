"""
Sandboxed code evaluation.

Provides two isolation levels behind one contract (one asynchronous outcome
per submission, teardown invalidates pending outcomes):
- NONE: a fresh namespace per session inside the host process
- SUBPROCESS: a worker process per session with resource limits
"""

# Core types and configuration
from pyscratch.sandbox.base import (
    SandboxLevel,
    SandboxConfig,
    SessionState,
    SandboxSession,
    Sandbox,
)

# Result channel
from pyscratch.sandbox.channel import (
    EvaluationOutcome,
    CapturedOutput,
    ResultChannel,
    encode_frame,
    decode_frame,
    encode_code,
    decode_code,
    pack_value,
    unpack_value,
)

# Sandbox implementations
from pyscratch.sandbox.inprocess import InProcessSandbox
from pyscratch.sandbox.subprocess import SubprocessSandbox

from pyscratch.sandbox.executor import create_sandbox

__all__ = [
    # Core types
    "SandboxLevel",
    "SandboxConfig",
    "SessionState",
    "SandboxSession",
    "Sandbox",
    # Result channel
    "EvaluationOutcome",
    "CapturedOutput",
    "ResultChannel",
    "encode_frame",
    "decode_frame",
    "encode_code",
    "decode_code",
    "pack_value",
    "unpack_value",
    # Sandbox implementations
    "InProcessSandbox",
    "SubprocessSandbox",
    "create_sandbox",
]
