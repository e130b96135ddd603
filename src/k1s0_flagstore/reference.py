"""Attribute reference parsing for clause attributes."""

from __future__ import annotations

ERR_EMPTY = "empty reference"
ERR_INVALID_ESCAPE_SEQUENCE = "invalid escape sequence"
ERR_DOUBLE_TRAILING_SLASH = "double or trailing slash"


class Reference:
    """A parsed attribute reference.

    A reference is either a plain attribute name (``"email"``) or a slash-delimited
    path (``"/address/street"``) in which ``~1`` stands for ``/`` and ``~0`` for ``~``.
    Parsing never raises; an invalid reference carries a non-empty ``error``.
    """

    __slots__ = ("_raw_path", "_components", "_error")

    def __init__(
        self,
        raw_path: object,
        components: tuple[str, ...] = (),
        error: str | None = None,
    ) -> None:
        self._raw_path = raw_path
        self._components = components
        self._error = error

    @classmethod
    def create(cls, value: object) -> Reference:
        """Parse a reference that may use the ``/path`` syntax."""
        if not isinstance(value, str) or value in ("", "/"):
            return cls(value, (), ERR_EMPTY)
        if not value.startswith("/"):
            return cls(value, (value,))
        if value.endswith("/"):
            return cls(value, (), ERR_DOUBLE_TRAILING_SLASH)

        components: list[str] = []
        for part in value[1:].split("/"):
            if part == "":
                return cls(value, (), ERR_DOUBLE_TRAILING_SLASH)
            unescaped = _unescape(part)
            if unescaped is None:
                return cls(value, (), ERR_INVALID_ESCAPE_SEQUENCE)
            components.append(unescaped)
        return cls(value, tuple(components))

    @classmethod
    def create_literal(cls, value: object) -> Reference:
        """Treat the whole string as a single attribute name, even if it starts with ``/``."""
        if not isinstance(value, str) or value == "":
            return cls(value, (), ERR_EMPTY)
        if not value.startswith("/"):
            return cls(value, (value,))
        escaped = "/" + value.replace("~", "~0").replace("/", "~1")
        return cls(escaped, (value,))

    @property
    def error(self) -> str | None:
        return self._error

    @property
    def raw_path(self) -> object:
        return self._raw_path

    @property
    def depth(self) -> int:
        return len(self._components)

    def component(self, index: int) -> str | None:
        if index < 0 or index >= len(self._components):
            return None
        return self._components[index]

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Reference):
            return NotImplemented
        return self._error == other._error and self._components == other._components

    def __hash__(self) -> int:
        return hash((self._error, self._components))

    def __repr__(self) -> str:
        return f"Reference({self._raw_path!r})"


def _unescape(part: str) -> str | None:
    if "~" not in part:
        return part
    out: list[str] = []
    i = 0
    while i < len(part):
        ch = part[i]
        if ch != "~":
            out.append(ch)
            i += 1
            continue
        if i + 1 == len(part):
            return None
        nxt = part[i + 1]
        if nxt == "0":
            out.append("~")
        elif nxt == "1":
            out.append("/")
        else:
            return None
        i += 2
    return "".join(out)
