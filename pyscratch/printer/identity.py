"""
Stable per-reference identities for composite values.

An identity is a positive integer handed out the first time a composite value
is seen. The same reference always yields the same identity for as long as
the provider lives, which is the lifetime of one sandbox session.

Two interchangeable backends satisfy that contract:

- WeakIdentityProvider: keeps only weak references where the type allows it,
  so identifying a value never keeps it alive.
- TaggingIdentityProvider: an explicit registry that holds every identified
  value until reset().

CPython's built-in containers (list, dict, tuple, set) do not support weak
references. The weak backend pins those in the same way the tagging backend
does; the owning session releases them on dispose via reset().
"""
import logging
import weakref
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Tuple

logger = logging.getLogger(__name__)


class IdentityProvider(ABC):
    """Maps object references to session-scoped integer identities."""

    def __init__(self):
        self._counter = 0

    def _next_identity(self) -> int:
        self._counter += 1
        return self._counter

    @abstractmethod
    def identify(self, value: Any) -> int:
        """Return the identity of value, assigning a new one on first sight."""
        pass

    @abstractmethod
    def forget(self, value: Any) -> None:
        """Drop the identity of value, if it has one."""
        pass

    @abstractmethod
    def reset(self) -> None:
        """Drop every identity and release anything held."""
        pass

    @abstractmethod
    def __len__(self) -> int:
        pass


class WeakIdentityProvider(IdentityProvider):
    """Weak-reference keyed identity table."""

    def __init__(self):
        super().__init__()
        # id(value) -> (holder, is_weak, identity); holder is a weakref or the pinned value
        self._table: Dict[int, Tuple[Any, bool, int]] = {}

    def _lookup(self, value: Any) -> Optional[int]:
        entry = self._table.get(id(value))
        if entry is None:
            return None
        holder, is_weak, identity = entry
        target = holder() if is_weak else holder
        return identity if target is value else None

    def identify(self, value: Any) -> int:
        identity = self._lookup(value)
        if identity is not None:
            return identity

        key = id(value)
        identity = self._next_identity()
        try:
            self._table[key] = (weakref.ref(value, self._make_eraser(key)), True, identity)
        except TypeError:
            self._table[key] = (value, False, identity)
        return identity

    def _make_eraser(self, key: int):
        provider_ref = weakref.ref(self)

        def _erase(ref: weakref.ref) -> None:
            provider = provider_ref()
            if provider is None:
                return
            entry = provider._table.get(key)
            if entry is not None and entry[0] is ref:
                del provider._table[key]

        return _erase

    def forget(self, value: Any) -> None:
        if self._lookup(value) is not None:
            del self._table[id(value)]

    def reset(self) -> None:
        self._table.clear()

    def __len__(self) -> int:
        return len(self._table)


class TaggingIdentityProvider(IdentityProvider):
    """Explicit registry that holds every identified value until reset()."""

    def __init__(self):
        super().__init__()
        self._tags: Dict[int, Tuple[Any, int]] = {}

    def identify(self, value: Any) -> int:
        entry = self._tags.get(id(value))
        if entry is not None:
            return entry[1]
        identity = self._next_identity()
        self._tags[id(value)] = (value, identity)
        return identity

    def forget(self, value: Any) -> None:
        self._tags.pop(id(value), None)

    def reset(self) -> None:
        self._tags.clear()

    def __len__(self) -> int:
        return len(self._tags)


_BACKENDS = {
    "weak": WeakIdentityProvider,
    "tagging": TaggingIdentityProvider,
}


def create_identity_provider(kind: str = "weak") -> IdentityProvider:
    """Create an identity provider backend by name ("weak" or "tagging")."""
    try:
        backend = _BACKENDS[kind]
    except KeyError:
        raise ValueError(f"Unknown identity backend: {kind}") from None
    logger.debug(f"Creating {kind} identity provider")
    return backend()
