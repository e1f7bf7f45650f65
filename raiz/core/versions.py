"""
Maven-style version ordering and affected-range containment.

Ranges are kept as strings on ``Vulnerability.affected_version_range`` in a
canonical form produced by the provider adapters::

    >=2.0.0, <2.15.0 || =1.2.3

Each ``||`` branch is an intersection of comparator constraints. Maven
bracket notation (``[1.0,2.0)``, ``(,1.5]``, ``[1.2]``) is accepted as well.
"""
import re
from functools import total_ordering
from typing import List, Optional, Tuple

# Qualifier order of Maven's ComparableVersion; unknown qualifiers sort after these.
_QUALIFIERS = {
    "alpha": 0, "a": 0,
    "beta": 1, "b": 1,
    "milestone": 2, "m": 2,
    "rc": 3, "cr": 3,
    "snapshot": 4,
    "": 5, "ga": 5, "final": 5, "release": 5,
    "sp": 6,
}

_TOKEN_RE = re.compile(r"\d+|[a-zA-Z]+")
_COMPARATOR_RE = re.compile(r"^(>=|<=|>|<|==|=|!=)?\s*(.+)$")


@total_ordering
class Version:
    def __init__(self, raw: str) -> None:
        self.raw = raw.strip().lstrip("vV")
        self.tokens = self._tokenize(self.raw)

    @staticmethod
    def _tokenize(raw: str) -> Tuple:
        tokens = []
        for tok in _TOKEN_RE.findall(raw.lower()):
            if tok.isdigit():
                tokens.append((0, int(tok), ""))
            else:
                rank = _QUALIFIERS.get(tok)
                if rank is None:
                    tokens.append((-1, 7, tok))
                else:
                    tokens.append((-1, rank, ""))
        # trailing zeros and release markers are insignificant: 1.0.0 == 1 == 1.0-final
        while tokens and tokens[-1] in ((0, 0, ""), (-1, 5, "")):
            tokens.pop()
        return tuple(tokens)

    @property
    def major(self) -> int:
        if self.tokens and self.tokens[0][0] == 0:
            return self.tokens[0][1]
        return 0

    def _cmp(self, other: "Version") -> int:
        a, b = self.tokens, other.tokens
        for i in range(max(len(a), len(b))):
            # A missing numeric part reads as 0, a missing qualifier as a release.
            x = a[i] if i < len(a) else self._padding(b[i])
            y = b[i] if i < len(b) else self._padding(a[i])
            if x != y:
                if x[0] != y[0]:
                    # a number outranks any qualifier: 1.0.1 > 1.0-sp > 1.0 > 1.0-rc
                    return 1 if x[0] == 0 else -1
                return -1 if x < y else 1
        return 0

    @staticmethod
    def _padding(tok):
        return (0, 0, "") if tok[0] == 0 else (-1, 5, "")

    def __eq__(self, other) -> bool:
        if not isinstance(other, Version):
            return NotImplemented
        return self._cmp(other) == 0

    def __lt__(self, other: "Version") -> bool:
        return self._cmp(other) < 0

    def __hash__(self) -> int:
        return hash(self.tokens)

    def __repr__(self) -> str:
        return f"Version({self.raw!r})"

    def __str__(self) -> str:
        return self.raw


Constraint = Tuple[str, Version]
Branch = List[Constraint]


def parse_range(text: str) -> List[Branch]:
    """Parse an affected range into OR-ed branches of AND-ed constraints."""
    text = (text or "").strip()
    if not text:
        return []
    if text[0] in "[(":
        return _parse_maven_range(text)

    branches = []
    for chunk in text.split("||"):
        branch = []
        for part in chunk.split(","):
            part = part.strip()
            if not part:
                continue
            match = _COMPARATOR_RE.match(part)
            if not match:
                raise ValueError(f"bad constraint '{part}' in range '{text}'")
            op = match.group(1) or "="
            branch.append(("=" if op == "==" else op, Version(match.group(2))))
        if branch:
            branches.append(branch)
    return branches


def _parse_maven_range(text: str) -> List[Branch]:
    branches = []
    for lower_br, body, upper_br in re.findall(r"([\[(])([^\])]*)([\])])", text):
        bounds = body.split(",")
        if len(bounds) == 1:
            branches.append([("=", Version(bounds[0]))])
            continue
        low, high = bounds[0].strip(), bounds[1].strip()
        branch = []
        if low:
            branch.append((">=" if lower_br == "[" else ">", Version(low)))
        if high:
            branch.append(("<=" if upper_br == "]" else "<", Version(high)))
        branches.append(branch)
    if not branches:
        raise ValueError(f"bad maven range '{text}'")
    return branches


def _satisfies(version: Version, op: str, bound: Version) -> bool:
    if op == "=":
        return version == bound
    if op == "!=":
        return version != bound
    if op == ">=":
        return version >= bound
    if op == ">":
        return version > bound
    if op == "<=":
        return version <= bound
    return version < bound


def contains(range_text: str, version: str) -> Optional[bool]:
    """True/False when the range can be evaluated, None when it cannot be parsed."""
    try:
        branches = parse_range(range_text)
    except ValueError:
        return None
    if not branches:
        return None
    v = Version(version)
    return any(all(_satisfies(v, op, bound) for op, bound in branch) for branch in branches)


def matching_branch(range_text: str, version: str) -> Optional[Branch]:
    try:
        branches = parse_range(range_text)
    except ValueError:
        return None
    v = Version(version)
    for branch in branches:
        if all(_satisfies(v, op, bound) for op, bound in branch):
            return branch
    return None


def format_constraints(*constraints: Tuple[str, Optional[str]]) -> str:
    """Join ``(op, version)`` pairs into one canonical branch, skipping empty bounds."""
    return ", ".join(f"{op}{ver}" for op, ver in constraints if ver)
