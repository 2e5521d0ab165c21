"""
Cycle-safe pretty printer.

Renders arbitrary, possibly self-referential values into indented text and
numbers containers through a session-scoped IdentityProvider.
"""
from pyscratch.printer.identity import (
    IdentityProvider,
    WeakIdentityProvider,
    TaggingIdentityProvider,
    create_identity_provider,
)
from pyscratch.printer.serializer import (
    Category,
    PrettyPrinter,
    classify,
    describe_error,
    is_error,
    to_string,
)
from pyscratch.printer.values import OpaqueValue, RemoteError

__all__ = [
    # Identities
    "IdentityProvider",
    "WeakIdentityProvider",
    "TaggingIdentityProvider",
    "create_identity_provider",
    # Rendering
    "Category",
    "PrettyPrinter",
    "classify",
    "describe_error",
    "is_error",
    "to_string",
    # Transport stand-ins
    "OpaqueValue",
    "RemoteError",
]
