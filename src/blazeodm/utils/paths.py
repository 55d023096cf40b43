"""
Path helpers for the node tree and the child reorder calculator.
"""

from __future__ import annotations

from bisect import bisect_left
from typing import Dict, List, Optional, Sequence

from ..errors import IdentifierError

ROOT = "/"

# Child nodes holding translations; never exposed as documents.
LOCALE_NODE_PREFIX = "blaze_locale:"

_ILLEGAL_NAME_CHARS = frozenset("/[]*|")


def is_absolute(path: str) -> bool:
    return path.startswith(ROOT)


def normalize(path: str) -> str:
    """
    Return an absolute path without a trailing slash.

    Relative ids are interpreted against the root node.
    """

    if not path:
        raise IdentifierError("Empty path")
    if not is_absolute(path):
        path = ROOT + path
    if len(path) > 1 and path.endswith(ROOT):
        path = path.rstrip(ROOT) or ROOT
    return path


def basename(path: str) -> str:
    if path == ROOT:
        return ""
    return path.rsplit(ROOT, 1)[-1]


def dirname(path: str) -> str:
    if path == ROOT:
        return ROOT
    parent = path.rsplit(ROOT, 1)[0]
    return parent or ROOT


def join(parent: str, name: str) -> str:
    if parent == ROOT:
        return ROOT + name
    return f"{parent}{ROOT}{name}"


def depth(path: str) -> int:
    if path == ROOT:
        return 0
    return path.count(ROOT)


def is_locale_node_name(name: str) -> bool:
    return name.startswith(LOCALE_NODE_PREFIX)


def is_descendant(path: str, ancestor: str) -> bool:
    if ancestor == ROOT:
        return path != ROOT
    return path.startswith(ancestor + ROOT)


def rebase(path: str, old_prefix: str, new_prefix: str) -> str:
    """Rewrite ``path`` from below ``old_prefix`` to below ``new_prefix``."""
    if path == old_prefix:
        return new_prefix
    if not is_descendant(path, old_prefix):
        return path
    suffix = path[len(old_prefix) :] if old_prefix != ROOT else path
    if new_prefix == ROOT:
        return suffix
    return new_prefix + suffix


def assert_valid_name(name: str) -> None:
    if not name or name in (".", ".."):
        raise IdentifierError(f"Invalid node name {name!r}")
    illegal = _ILLEGAL_NAME_CHARS.intersection(name)
    if illegal:
        raise IdentifierError(
            f"Invalid node name {name!r}: contains {''.join(sorted(illegal))!r}"
        )


def _stable_positions(positions: Sequence[int]) -> set[int]:
    """Indexes of one longest increasing subsequence of ``positions``."""
    tail_values: List[int] = []
    tail_indexes: List[int] = []
    previous: List[int] = [-1] * len(positions)
    for index, value in enumerate(positions):
        slot = bisect_left(tail_values, value)
        if slot > 0:
            previous[index] = tail_indexes[slot - 1]
        if slot == len(tail_values):
            tail_values.append(value)
            tail_indexes.append(index)
        else:
            tail_values[slot] = value
            tail_indexes[slot] = index

    stable: set[int] = set()
    index = tail_indexes[-1] if tail_indexes else -1
    while index != -1:
        stable.add(index)
        index = previous[index]
    return stable


def calculate_order_before(old: Sequence[str], new: Sequence[str]) -> Dict[str, Optional[str]]:
    """
    Compute ``{source: target}`` "insert source before target" moves.

    Replaying the moves in insertion order against ``old`` yields ``new``.
    A ``None`` target means "move to the end". Names present in only one of
    the sequences are ignored. Names that already appear in a longest
    increasing run stay put, so the number of moves is minimal.
    """

    new_names = set(new)
    remaining = [name for name in old if name in new_names]
    old_names = set(remaining)
    target = [name for name in new if name in old_names]
    if remaining == target:
        return {}

    old_index = {name: position for position, name in enumerate(remaining)}
    stable = _stable_positions([old_index[name] for name in target])

    moves: Dict[str, Optional[str]] = {}
    for position in range(len(target) - 1, -1, -1):
        if position in stable:
            continue
        following = target[position + 1] if position + 1 < len(target) else None
        moves[target[position]] = following
    return moves


def apply_order_before(names: Sequence[str], source: str, target: Optional[str]) -> List[str]:
    """Return ``names`` with ``source`` moved before ``target`` (or to the end)."""
    if source not in names:
        raise IdentifierError(f"Unknown child {source!r}")
    result = [name for name in names if name != source]
    if target is None:
        result.append(source)
        return result
    if target not in result:
        raise IdentifierError(f"Unknown child {target!r}")
    result.insert(result.index(target), source)
    return result
