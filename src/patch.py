"""
Patch Builder - JSON Patch construction for deep paths.

Builds the minimal list of "add" operations needed to set a value at an
arbitrary depth, synthesizing every missing intermediate container without
touching containers that already exist.
"""

import copy
from typing import Any, Dict, List

from errors import ControllerError
from tree import Path, get_path, has_path, split_path


def sanitize_path(path: Path, base: Any) -> List[Any]:
    """
    Resolve every "-" segment to the current length of its array.

    Args:
        path: Dotted string or list of segments.
        base: Tree the path is resolved against.

    Returns:
        A new list of segments with "-" replaced by integer indexes.

    Raises:
        ControllerError: If a "-" segment follows something that is not an array.
    """
    segments = split_path(path)
    while "-" in segments:
        dash = segments.index("-")
        arr = get_path(base, segments[:dash], [])
        if not isinstance(arr, list):
            raise ControllerError(f"Non valid path, can not append to {arr!r}")
        segments[dash] = len(arr)
    return segments


def escape_segment(segment: Any) -> str:
    return str(segment).replace("~", "~0").replace("/", "~1")


def to_pointer(segments: List[Any]) -> str:
    return "/" + "/".join(escape_segment(s) for s in segments)


def build_patch(path: Path, value: Any, base: Any) -> List[Dict[str, Any]]:
    """
    Build ordered add operations that set value at path.

    Walks from the target upward: every prefix missing from base gets an
    operation creating an empty container, a list when the segment below it
    is an integer index and a dict otherwise. The walk stops at the first
    prefix already present, so existing siblings are never overwritten.

    Args:
        path: Dotted string or list of segments, "-" appends to an array.
        value: Value for the leaf operation.
        base: Current document the patch will be applied to.

    Returns:
        JSON Patch operations ordered root to leaf.
    """
    segments = sanitize_path(path, base)
    if not segments:
        raise ControllerError("Cannot build a patch for an empty path")

    operations: List[Dict[str, Any]] = []
    while True:
        operations.insert(
            0, {"op": "add", "path": to_pointer(segments), "value": copy.deepcopy(value)}
        )
        popped = segments.pop()
        value = [] if isinstance(popped, int) else {}
        if has_path(base, segments):
            break
    return operations
