"""
Stand-ins for values that cannot cross the isolation boundary intact.
"""
from dataclasses import dataclass


@dataclass(frozen=True)
class OpaqueValue:
    """A value that could not be transported; keeps its type name and repr."""
    type_name: str
    text: str

    def __str__(self) -> str:
        return self.text


class RemoteError(Exception):
    """An exception raised inside a sandbox that could not be transported."""

    def __init__(self, type_name: str, message: str):
        super().__init__(type_name, message)
        self.type_name = type_name
        self.message = message

    def __str__(self) -> str:
        return self.message
