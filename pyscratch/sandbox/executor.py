"""
Sandbox factory that selects the implementation for an isolation level.
"""
from typing import Optional

from pyscratch.sandbox.base import Sandbox, SandboxConfig, SandboxLevel
from pyscratch.sandbox.inprocess import InProcessSandbox
from pyscratch.sandbox.subprocess import SubprocessSandbox


def create_sandbox(config: Optional[SandboxConfig] = None) -> Sandbox:
    """Create the sandbox backend matching config.level."""
    config = config or SandboxConfig()
    if config.level == SandboxLevel.NONE:
        return InProcessSandbox(config)
    elif config.level == SandboxLevel.SUBPROCESS:
        return SubprocessSandbox(config)
    raise ValueError(f"Unknown sandbox level: {config.level}")
