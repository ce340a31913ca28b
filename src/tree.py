"""
Path helpers for JSON-like trees.

A tree is any nesting of dicts, lists and scalars as decoded from JSON. A
path is a list of segments: strings address mapping keys and integers
address list positions. Dotted strings ("metadata.annotations") are accepted
wherever a path is.
"""

from typing import Any, List, Sequence, Union

Segment = Union[str, int]
Path = Union[str, Sequence[Segment]]

MISSING = object()


def split_path(path: Path) -> List[Segment]:
    """Return a fresh list of segments for a dotted string or sequence."""
    if isinstance(path, str):
        return path.split(".") if path else []
    return list(path)


def _step(node: Any, segment: Segment) -> Any:
    if isinstance(node, dict):
        key = segment if isinstance(segment, str) else str(segment)
        return node.get(key, MISSING)
    if isinstance(node, list):
        try:
            index = int(segment)
        except (TypeError, ValueError):
            return MISSING
        if 0 <= index < len(node):
            return node[index]
    return MISSING


def get_path(tree: Any, path: Path, default: Any = None) -> Any:
    """Get the value at path, or default when any segment is absent."""
    node = tree
    for segment in split_path(path):
        node = _step(node, segment)
        if node is MISSING:
            return default
    return node


def has_path(tree: Any, path: Path) -> bool:
    """True when path exists in tree, even if it holds None."""
    return get_path(tree, path, MISSING) is not MISSING


def set_path(tree: Any, path: Path, value: Any) -> Any:
    """
    Set value at path, creating intermediate containers.

    A missing container becomes a list when the segment that follows it is
    an integer, otherwise a dict. Returns the tree for chaining.
    """
    segments = split_path(path)
    if not segments:
        raise ValueError("Cannot set the root of a tree")

    node = tree
    for i, segment in enumerate(segments[:-1]):
        child = _step(node, segment)
        if not isinstance(child, (dict, list)):
            child = [] if isinstance(segments[i + 1], int) else {}
            _assign(node, segment, child)
        node = child
    _assign(node, segments[-1], value)
    return tree


def _assign(node: Any, segment: Segment, value: Any) -> None:
    if isinstance(node, list):
        index = int(segment)
        if index == len(node):
            node.append(value)
        elif index < len(node):
            node[index] = value
        else:
            node.extend([None] * (index - len(node)))
            node.append(value)
    elif isinstance(node, dict):
        node[segment if isinstance(segment, str) else str(segment)] = value
    else:
        raise TypeError(f"Cannot set {segment!r} on {type(node).__name__}")
