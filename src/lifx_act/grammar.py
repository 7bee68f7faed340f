from __future__ import annotations

from typing import Any, Iterable, Sequence


ALL = "all"
SEPARATOR = "and"
ADVERBS = ("much", "little")
SPEED_QUICKLY = "quickly"
SPEED_SLOWLY = "slowly"
QUICKLY_MS = 0
SLOWLY_MS = 10000


class CommandError(Exception):
    def __init__(self, *, code: str, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details or {}


def normalize_name(value: str) -> str:
    return " ".join(value.strip().lower().split())


def tokenize(command: str) -> list[str]:
    return command.split()


class TargetSet:
    """Either every bulb (`all`) or an ordered set of bulb names.

    Names are matched case-insensitively. Explicit sets shrink as bulbs are
    matched; the `all` set never changes.
    """

    def __init__(self, names: Iterable[str] = (), *, is_all: bool = False) -> None:
        self._is_all = is_all
        self._names: dict[str, str] = {}
        if not is_all:
            for name in names:
                self._names.setdefault(normalize_name(name), name)

    @classmethod
    def all(cls) -> "TargetSet":
        return cls(is_all=True)

    @property
    def is_all(self) -> bool:
        return self._is_all

    @property
    def names(self) -> list[str]:
        return list(self._names.values())

    @property
    def exhausted(self) -> bool:
        return not self._is_all and not self._names

    @property
    def key(self) -> str:
        if self._is_all:
            return ALL
        return "".join(name_norm.replace("_", "__") + "_" for name_norm in self._names)

    def matches(self, name: str) -> bool:
        return self._is_all or normalize_name(name) in self._names

    def discard(self, name: str) -> None:
        if not self._is_all:
            self._names.pop(normalize_name(name), None)

    def copy(self) -> "TargetSet":
        return TargetSet(self.names, is_all=self._is_all)

    def to_json(self) -> str | list[str]:
        return ALL if self._is_all else self.names

    def __len__(self) -> int:
        return len(self._names)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, TargetSet):
            return NotImplemented
        return self._is_all == other._is_all and list(self._names) == list(other._names)

    def __repr__(self) -> str:
        return "TargetSet(all)" if self._is_all else f"TargetSet({self.names!r})"


def parse_targets(tokens: Sequence[str], start: int, stopper: str | None) -> TargetSet:
    stop = len(tokens)
    if stopper:
        stop = index_of(tokens, stopper, default=len(tokens))

    span = list(tokens[start:stop])
    if not span or span[0].lower() == ALL:
        return TargetSet.all()
    return TargetSet(token for token in span if token.lower() != SEPARATOR)


def index_of(tokens: Sequence[str], keyword: str, *, default: int = -1) -> int:
    for i, token in enumerate(tokens):
        if token.lower() == keyword:
            return i
    return default


def parse_clause_value(tokens: Sequence[str], keyword: str) -> str | None:
    """Token following the first `keyword`, e.g. `to Evening` -> `Evening`."""
    i = index_of(tokens, keyword)
    if i == -1 or i == len(tokens) - 1:
        return None
    return tokens[i + 1]


def parse_speed(tokens: Sequence[str], default: int | None) -> int | None:
    if index_of(tokens, SPEED_QUICKLY) != -1:
        return QUICKLY_MS
    if index_of(tokens, SPEED_SLOWLY) != -1:
        return SLOWLY_MS
    return default


def parse_adverb(tokens: Sequence[str]) -> str | None:
    if tokens and tokens[0].lower() in ADVERBS:
        return tokens[0].lower()
    return None


def parse_number(token: str) -> int:
    text = token.strip().lower()
    try:
        if text.startswith("0x"):
            value = int(text[2:], 16)
        else:
            value = int(text, 10)
    except ValueError as exc:
        raise CommandError(
            code="invalid_number",
            message=f"Not a number: {token}",
            details={"token": token},
        ) from exc
    return max(0, min(0xFFFF, value))


def parse_color_clause(tokens: Sequence[str]) -> tuple[int, int, int] | str:
    """Parse `in <v1> <v2> <v3>` or `in <color name>`.

    A color name may span several words (`in light blue`); speed keywords
    after the clause are not part of it.
    """
    i = index_of(tokens, "in")
    if i == -1 or i == len(tokens) - 1:
        raise CommandError(
            code="missing_clause",
            message="Color verbs need an 'in' clause, e.g. 'in red' or 'in 0xffff 0 0'",
        )

    rest = [token for token in tokens[i + 1 :] if token.lower() not in (SPEED_QUICKLY, SPEED_SLOWLY)]
    if not rest:
        raise CommandError(code="missing_clause", message="Missing color after 'in'")
    if len(rest) >= 3 and rest[0][:1].isdigit():
        return parse_number(rest[0]), parse_number(rest[1]), parse_number(rest[2])
    return " ".join(rest)
