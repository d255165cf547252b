"""Per-request pipeline context.

The context is the only channel between steps: step N stores what it
derived, step N+1 reads it, and async tasks see the final state. It is
created fresh for every request and the same object survives retries.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping, MutableMapping
from typing import Any

from feature_pipelines.errors import ContextKeyError


class Context(MutableMapping[str, Any]):
    """Open-ended mutable mapping with attribute access.

    ``ctx["user"]`` and ``ctx.user`` are the same slot. Reading a missing
    key through attribute access raises AttributeError; use ``require``
    when a later step depends on an earlier one having run. Keys that
    collide with mapping methods (``get``, ``snapshot``...) can only be
    set and read with item access.
    """

    __slots__ = ("_data",)

    def __init__(self, initial: Mapping[str, Any] | None = None) -> None:
        object.__setattr__(self, "_data", dict(initial or {}))

    def __getitem__(self, key: str) -> Any:
        return self._data[key]

    def __setitem__(self, key: str, value: Any) -> None:
        self._data[key] = value

    def __delitem__(self, key: str) -> None:
        del self._data[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __getattr__(self, name: str) -> Any:
        if name == "_data" or name.startswith("__"):
            raise AttributeError(name)
        try:
            return self._data[name]
        except KeyError:
            raise AttributeError(
                f"Context has no attribute '{name}'"
            ) from None

    def __setattr__(self, name: str, value: Any) -> None:
        if hasattr(type(self), name):
            raise AttributeError(
                f"'{name}' is a Context method; store it with ctx['{name}'] instead"
            )
        self._data[name] = value

    def __delattr__(self, name: str) -> None:
        try:
            del self._data[name]
        except KeyError:
            raise AttributeError(name) from None

    def __repr__(self) -> str:
        return f"Context({self._data!r})"

    def require(self, key: str) -> Any:
        """Return the value for *key* or raise ContextKeyError."""
        try:
            return self._data[key]
        except KeyError:
            raise ContextKeyError(key) from None

    def snapshot(self) -> dict[str, Any]:
        """Shallow plain-dict copy of the current state."""
        return dict(self._data)
