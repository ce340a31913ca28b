"""
Apply Engine - create-or-update of child resources.

apply() reconciles a desired manifest against the live resource using a
three-way merge: fields present in the previously applied configuration
(kept in an annotation) but missing from the new manifest are explicitly
nulled so the server deletes them. replace() and ensure_exists() are the
simpler put and create-if-missing primitives.

All three are safe to retry after a transient error. They re-read the live
resource on every call.
"""

import copy
import json
import logging
from enum import Enum
from typing import Any, Dict, List, Optional

from context import (
    DEBUG_LABEL,
    LAST_APPLIED_ANNOTATION,
    PENDING_CONFIGURATION_ANNOTATION,
)
from errors import ApiError
from kube import ApiResponse, ResourceClient
from tree import MISSING, get_path, set_path

logger = logging.getLogger(__name__)

ADDITIVE_MERGE_PATCH_WARNING = (
    "AdditiveMergePatch - Skipping reconcileFields from last-applied."
)
CREATED_STATUSES = (200, 201, 202)
ANNOTATIONS_PATH = ["metadata", "annotations"]


class ApplyMode(Enum):
    """Patch strategies supported by apply()."""

    MERGE_PATCH = "MergePatch"
    STRATEGIC_MERGE_PATCH = "StrategicMergePatch"
    ADDITIVE_MERGE_PATCH = "AdditiveMergePatch"

    @classmethod
    def parse(cls, value: Any) -> "ApplyMode":
        """Accept an ApplyMode or its name in any letter case."""
        if isinstance(value, cls):
            return value
        for mode in cls:
            if str(value).lower() == mode.value.lower():
                return mode
        raise ValueError(f"Unknown apply mode: {value}")


# Deep merge =================================================================


def _mergeable(value: Any) -> bool:
    return isinstance(value, (dict, list))


def combine_merge(target: List[Any], source: List[Any]) -> List[Any]:
    """
    Merge arrays position by position.

    An index missing from target takes the source element, mergeable
    elements at the same index are deep merged, and any other source element
    is appended unless target already contains an equal one. Elements have
    no identity key, so this can misalign arrays that were reordered.
    """
    destination = list(target)
    for i, element in enumerate(source):
        if i >= len(destination):
            destination.append(copy.deepcopy(element))
        elif _mergeable(element):
            destination[i] = deep_merge(destination[i], element)
        elif element not in target:
            destination.append(element)
    return destination


def deep_merge(target: Any, source: Any) -> Any:
    """Recursively merge source onto target without modifying either."""
    if isinstance(source, list):
        if isinstance(target, list):
            return combine_merge(target, source)
        return copy.deepcopy(source)
    if isinstance(source, dict):
        if not isinstance(target, dict):
            return copy.deepcopy(source)
        result = copy.deepcopy(target)
        for key, value in source.items():
            if key in target and _mergeable(value):
                result[key] = deep_merge(target[key], value)
            else:
                result[key] = copy.deepcopy(value)
        return result
    return source


# Three-way diff =============================================================


def reconcile_fields(
    config: Dict[str, Any],
    last_applied: Dict[str, Any],
    parent_path: Optional[List[str]] = None,
) -> None:
    """
    Null the leaves of last_applied that config no longer has.

    Only leaves are nulled, never whole objects: an object may hold fields
    added by someone else that must survive. An object is walked into unless
    config explicitly set it to null or replaced it with a non-object.
    Modifies config in place.
    """
    parent_path = parent_path or []
    for key, old_value in last_applied.items():
        path = parent_path + [key]
        current = get_path(config, path, MISSING)
        if isinstance(old_value, dict):
            if current is MISSING or isinstance(current, dict):
                reconcile_fields(config, old_value, path)
        elif current is MISSING and old_value is not None:
            set_path(config, path, None)


def _ensure_annotations(desired: Dict[str, Any]) -> None:
    if get_path(desired, ANNOTATIONS_PATH, MISSING) is None:
        set_path(desired, ANNOTATIONS_PATH, {})


def _set_annotation(desired: Dict[str, Any], key: str, value: Any) -> None:
    set_path(desired, ANNOTATIONS_PATH + [key], value)


def _fail(res: ApiResponse) -> ApiError:
    return ApiError.from_response(res)


# Operations =================================================================


async def _get_live(
    client: ResourceClient, name: str, namespace: Optional[str], uri: str
) -> Optional[Dict[str, Any]]:
    get = await client.get(name, namespace)
    if get.status_code == 200:
        logger.debug(
            f"Get {get.status_code} {uri}: resourceVersion "
            f"{get_path(get.body, ['metadata', 'resourceVersion'])}"
        )
        return get.body
    logger.debug(f"Get {get.status_code} {uri}")
    if get.status_code == 404:
        return None
    raise _fail(get)


async def _create(client: ResourceClient, desired: Dict[str, Any], uri: str):
    logger.debug(f"Post {uri}")
    post = await client.post(desired)
    logger.debug(f"Post {post.status_code} {uri}")
    if post.status_code not in CREATED_STATUSES:
        raise _fail(post)
    return ApiResponse(post.status_code, post.body)


async def ensure_exists(
    client: ResourceClient, desired: Dict[str, Any], status: bool = False
) -> ApiResponse:
    """
    Create the resource unless it already exists.

    An existing resource is returned untouched. A 409 on create means
    someone else created it concurrently and is reported as 200.

    Raises:
        ApiError: For any other failed get or create.
    """
    name = get_path(desired, ["metadata", "name"])
    namespace = get_path(desired, ["metadata", "namespace"])
    uri = client.uri(name, namespace, status)
    logger.debug(f"EnsureExists {uri}")

    get = await client.get(name, namespace)
    logger.debug(f"Get {get.status_code} {uri}")
    if get.status_code == 200:
        return ApiResponse(get.status_code, get.body)
    if get.status_code != 404:
        raise _fail(get)

    logger.debug(f"Post {uri}")
    post = await client.post(desired)
    logger.debug(f"Post {post.status_code} {uri}")
    if post.status_code in CREATED_STATUSES:
        return ApiResponse(post.status_code, post.body)
    if post.status_code == 409:
        return ApiResponse(200, post.body)
    raise _fail(post)


async def replace(
    client: ResourceClient,
    desired: Dict[str, Any],
    hard: bool = False,
    force: bool = True,
    status: bool = False,
) -> ApiResponse:
    """
    Put the desired resource, creating it when absent.

    Args:
        client: Client for the resource kind.
        desired: Full manifest; not modified.
        hard: Use desired exactly; otherwise live metadata (finalizers, uid,
            ...) is merged underneath desired metadata.
        force: Put with the live resourceVersion instead of the manifest's.
        status: Target the status subresource in log messages.

    Raises:
        ApiError: If the get, put or post fails.
    """
    desired = copy.deepcopy(desired)
    name = get_path(desired, ["metadata", "name"])
    namespace = get_path(desired, ["metadata", "namespace"])
    uri = client.uri(name, namespace, status)
    logger.debug(f"Replace {uri}")

    live = await _get_live(client, name, namespace, uri)
    if live is None:
        return await _create(client, desired, uri)

    live_metadata = live.get("metadata") or {}
    if not hard:
        desired["metadata"] = deep_merge(live_metadata, desired.get("metadata") or {})
    if force:
        set_path(
            desired,
            ["metadata", "resourceVersion"],
            live_metadata.get("resourceVersion"),
        )

    logger.debug(f"Put {uri}")
    put = await client.put(desired)
    logger.debug(f"Put {put.status_code} {uri}")
    if put.status_code not in (200, 201):
        raise _fail(put)
    return ApiResponse(put.status_code, put.body)


async def apply(
    client: ResourceClient,
    desired: Dict[str, Any],
    mode: Any = ApplyMode.MERGE_PATCH,
) -> ApiResponse:
    """
    Create or three-way-merge update a resource.

    Modes:
        MergePatch: null fields dropped since the last apply, then merge patch.
        StrategicMergePatch: same diff, sent as a strategic merge patch;
            falls back to a merge patch when the server answers 415.
        AdditiveMergePatch: no diff at all, removed fields are left in place
            and the last-applied annotation holds a warning instead of a
            snapshot.

    A live resource labelled deploy.razee.io/debug=true is left alone: the
    manifest is stashed in the pending-configuration annotation instead.

    Raises:
        ApiError: With the status code and body of the failing call.
    """
    desired = copy.deepcopy(desired)
    mode = ApplyMode.parse(mode)
    name = get_path(desired, ["metadata", "name"])
    namespace = get_path(desired, ["metadata", "namespace"])
    uri = client.uri(name, namespace)
    logger.debug(f"Apply {uri}")

    live = await _get_live(client, name, namespace, uri)

    if live is None:
        _ensure_annotations(desired)
        if mode is ApplyMode.ADDITIVE_MERGE_PATCH:
            _set_annotation(desired, LAST_APPLIED_ANNOTATION, ADDITIVE_MERGE_PATCH_WARNING)
        else:
            _set_annotation(desired, LAST_APPLIED_ANNOTATION, json.dumps(desired))
        return await _create(client, desired, uri)

    debug = str(get_path(live, ["metadata", "labels", DEBUG_LABEL], "false"))
    if debug.lower() == "true":
        logger.warning(
            f"{uri}: Debug enabled on resource: skipping modifying resource - "
            f"adding annotation {PENDING_CONFIGURATION_ANNOTATION}."
        )
        patch_obj = {
            "metadata": {
                "annotations": {PENDING_CONFIGURATION_ANNOTATION: json.dumps(desired)}
            }
        }
        res = await client.merge_patch(name, namespace, patch_obj)
        if not res.ok:
            raise _fail(res)
        return ApiResponse(200, res.body)

    _ensure_annotations(desired)
    if get_path(live, ANNOTATIONS_PATH + [PENDING_CONFIGURATION_ANNOTATION]):
        _set_annotation(desired, PENDING_CONFIGURATION_ANNOTATION, None)

    last_applied = get_path(live, ANNOTATIONS_PATH + [LAST_APPLIED_ANNOTATION])
    if mode is ApplyMode.ADDITIVE_MERGE_PATCH:
        _set_annotation(desired, LAST_APPLIED_ANNOTATION, ADDITIVE_MERGE_PATCH_WARNING)
    elif not last_applied or last_applied == ADDITIVE_MERGE_PATCH_WARNING:
        logger.warning(f"{uri}: No {LAST_APPLIED_ANNOTATION} found")
        _set_annotation(desired, LAST_APPLIED_ANNOTATION, json.dumps(desired))
    else:
        original = copy.deepcopy(desired)
        reconcile_fields(desired, json.loads(last_applied))
        # the diff may have nulled annotations that only the old snapshot had
        _ensure_annotations(desired)
        _set_annotation(desired, LAST_APPLIED_ANNOTATION, json.dumps(original))

    if mode is ApplyMode.STRATEGIC_MERGE_PATCH:
        res = await client.strategic_merge_patch(name, namespace, desired)
        logger.debug(f"StrategicMergePatch {res.status_code} {uri}")
        if res.status_code != 415:
            if not res.ok:
                raise _fail(res)
            return ApiResponse(res.status_code, res.body)

    res = await client.merge_patch(name, namespace, desired)
    logger.debug(f"{mode.value} {res.status_code} {uri}")
    if not res.ok:
        raise _fail(res)
    return ApiResponse(res.status_code, res.body)
