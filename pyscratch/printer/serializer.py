"""
Pretty printer that renders any value into deterministic, indented text.

The traversal is depth-first and tracks the identities of the containers that
are currently open (the ancestor stack). A container met again while it is
still open is abbreviated, which guarantees termination on self-containment.
The same container met in an unrelated branch is rendered in full again and
carries the same identity number, so shared structure stays visible.

Example:
    >>> shared = [1]
    >>> printer = PrettyPrinter()
    >>> print(printer.to_string({"b": shared, "a": shared}))
    dict:1 {
        a: list:2 [
            0: 1,
        ],
        b: list:2 [
            0: 1,
        ],
    }
"""
import logging
import numbers
import traceback
from collections import deque
from collections.abc import Mapping
from enum import Enum
from typing import Any, List, Optional

from pyscratch.config.defaults import PRINTER_DEFAULTS
from pyscratch.printer.identity import IdentityProvider, WeakIdentityProvider
from pyscratch.printer.values import OpaqueValue, RemoteError

logger = logging.getLogger(__name__)

_SEQUENCE_TYPES = (list, tuple, deque, set, frozenset)


class Category(str, Enum):
    """Rendering categories a value is classified into."""
    ABSENT = "absent"
    SCALAR = "scalar"
    STRING = "string"
    SEQUENCE = "sequence"
    MAPPING = "mapping"
    EXECUTABLE = "executable"
    ERROR = "error"
    OTHER = "other"


def is_error(value: Any) -> bool:
    """True if BaseException appears anywhere in the value's type ancestry."""
    for klass in type(value).__mro__:
        if klass is BaseException:
            return True
    return False


def classify(value: Any) -> Category:
    if value is None:
        return Category.ABSENT
    if isinstance(value, str):
        return Category.STRING
    if isinstance(value, numbers.Number):
        return Category.SCALAR
    if is_error(value):
        return Category.ERROR
    if isinstance(value, Mapping):
        return Category.MAPPING
    if isinstance(value, _SEQUENCE_TYPES):
        return Category.SEQUENCE
    if isinstance(value, OpaqueValue):
        return Category.OTHER
    if callable(value):
        return Category.EXECUTABLE
    return Category.OTHER


def _type_name(value: Any) -> str:
    if isinstance(value, OpaqueValue):
        return value.type_name
    return type(value).__name__


def _safe_str(value: Any) -> str:
    try:
        return str(value)
    except Exception:
        return "<unprintable>"


def _safe_repr(value: Any) -> str:
    try:
        return repr(value)
    except Exception:
        return "<unprintable>"


def describe_error(error: BaseException) -> str:
    """Canonical one-block text of an exception, e.g. "NameError: name 'x' ..."."""
    if isinstance(error, RemoteError):
        return f"{error.type_name}: {error.message}" if error.message else error.type_name
    try:
        lines = traceback.format_exception_only(type(error), error)
    except Exception:
        return f"{_type_name(error)} <unprintable>"
    return "".join(lines).rstrip("\n")


class PrettyPrinter:
    """Renders values to text, numbering containers through an IdentityProvider.

    Args:
        identities: Session-scoped identity provider. A private weak provider
            is created when omitted.
        indent: Columns added per nesting level.
        max_depth: Containers nested deeper than this are abbreviated.
    """

    def __init__(
        self,
        identities: Optional[IdentityProvider] = None,
        indent: int = PRINTER_DEFAULTS.indent,
        max_depth: int = PRINTER_DEFAULTS.max_depth,
    ):
        self.identities = identities if identities is not None else WeakIdentityProvider()
        self.indent = indent
        self.max_depth = max_depth

    def to_string(self, value: Any, short: bool = False) -> str:
        """Render value as text.

        Args:
            value: Anything.
            short: Render strings bare instead of quoted with a type tag. Used
                for captured output.

        Returns:
            The rendered text. This method never raises for any input.
        """
        ancestors: List[int] = []
        return self._render(value, short, ancestors, 0)

    def _render(self, value: Any, short: bool, ancestors: List[int], depth: int) -> str:
        try:
            category = classify(value)
            if category == Category.ABSENT:
                return PRINTER_DEFAULTS.absent
            if category == Category.SCALAR:
                return _safe_str(value)
            if category == Category.STRING:
                return value if short else f'{_type_name(value)} "{value}"'
            if category == Category.SEQUENCE:
                return self._render_sequence(value, short, ancestors, depth)
            if category == Category.MAPPING:
                return self._render_mapping(value, short, ancestors, depth)
            if category == Category.EXECUTABLE:
                self.identities.identify(value)
                return _safe_str(value)
            if category == Category.ERROR:
                self.identities.identify(value)
                return describe_error(value)
            return f"{_type_name(value)} {_safe_str(value)}"
        except Exception:
            logger.debug("Falling back while rendering %s", _type_name(value), exc_info=True)
            return f"{_type_name(value)} <unprintable>"

    def _render_sequence(self, value, short, ancestors, depth) -> str:
        identity = self.identities.identify(value)
        header = f"{_type_name(value)}:{identity}"
        if identity in ancestors or depth >= self.max_depth:
            return f"{header} [ {PRINTER_DEFAULTS.ellipsis} ]"

        if isinstance(value, (set, frozenset)):
            items = sorted(value, key=_safe_repr)
        else:
            items = list(value)

        ancestors.append(identity)
        try:
            padding = " " * (self.indent * (depth + 1))
            lines = [header + " ["]
            for index, item in enumerate(items):
                rendered = self._render(item, short, ancestors, depth + 1)
                lines.append(f"{padding}{index}: {rendered},")
            lines.append(" " * (self.indent * depth) + "]")
        finally:
            ancestors.pop()
        return "\n".join(lines)

    def _render_mapping(self, value, short, ancestors, depth) -> str:
        identity = self.identities.identify(value)
        header = f"{_type_name(value)}:{identity}"
        if identity in ancestors or depth >= self.max_depth:
            return f"{header} {{ {PRINTER_DEFAULTS.ellipsis} }}"

        entries = sorted(
            ((_safe_str(key), item) for key, item in value.items()),
            key=lambda entry: entry[0],
        )

        ancestors.append(identity)
        try:
            padding = " " * (self.indent * (depth + 1))
            lines = [header + " {"]
            for key, item in entries:
                rendered = self._render(item, short, ancestors, depth + 1)
                lines.append(f"{padding}{key}: {rendered},")
            lines.append(" " * (self.indent * depth) + "}")
        finally:
            ancestors.pop()
        return "\n".join(lines)


def to_string(
    value: Any,
    short: bool = False,
    identities: Optional[IdentityProvider] = None,
) -> str:
    """Render value with a one-off printer. Pass identities to share numbering."""
    return PrettyPrinter(identities).to_string(value, short)
