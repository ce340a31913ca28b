"""
Reconcile context - the working state of one reconcile pass.

Each step that writes to the API folds the server's echo back in by
returning a new context, so later steps always see the freshest object.
"""

import copy
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Mapping, Optional, Set

from errors import ApiError, ControllerError
from events import EventType, WatchEvent
from kube import ResourceClient
from tree import MISSING, Path, get_path

DATA_HASH_ANNOTATION = "deploy.razee.io/data-hash"
LAST_APPLIED_ANNOTATION = "deploy.razee.io/last-applied-configuration"
PENDING_CONFIGURATION_ANNOTATION = "deploy.razee.io/pending-configuration"
RECONCILE_LABEL = "deploy.razee.io/Reconcile"
DEBUG_LABEL = "deploy.razee.io/debug"
FINALIZER_CLEANUP_STATUS = "deploy.razee.io/finalizer-cleanup"
RAZEE_LOGS = "razee-logs"

IMPERSONATE_USER_PATH = ["spec", "clusterAuth", "impersonateUser"]
IMPERSONATE_USER_HEADER = "Impersonate-User"
IMPERSONATE_USER_UNSET = "false"


@dataclass(frozen=True)
class ReconcileContext:
    """
    Immutable view of the resource being reconciled.

    seen_log_hashes is shared by every context derived from the same event:
    it is the ledger of status log entries written during this pass.
    """

    event_type: Optional[EventType]
    object: Dict[str, Any]
    seen_log_hashes: Set[str] = field(default_factory=set)
    impersonate_user: Optional[str] = None

    @classmethod
    def from_event(cls, event: WatchEvent) -> "ReconcileContext":
        return cls(event_type=event.type, object=copy.deepcopy(event.object))

    @classmethod
    def from_raw(cls, data: Any) -> "ReconcileContext":
        """Best effort context for data that failed validation."""
        obj = data.get("object") if isinstance(data, Mapping) else None
        return cls(event_type=None, object=dict(obj) if isinstance(obj, Mapping) else {})

    @property
    def name(self) -> Optional[str]:
        return get_path(self.object, ["metadata", "name"])

    @property
    def namespace(self) -> Optional[str]:
        return get_path(self.object, ["metadata", "namespace"])

    @property
    def resource_version(self) -> Optional[str]:
        return get_path(self.object, ["metadata", "resourceVersion"])

    @property
    def reconcile_default(self) -> str:
        """Advisory reconcile label, "true" unless set."""
        return get_path(self.object, ["metadata", "labels", RECONCILE_LABEL], "true")

    @property
    def has_deletion_timestamp(self) -> bool:
        return self.get(["metadata", "deletionTimestamp"]) is not None

    def get(self, path: Path, default: Any = None) -> Any:
        return get_path(self.object, path, default)

    def has(self, path: Path) -> bool:
        return get_path(self.object, path, MISSING) is not MISSING

    def with_object(self, obj: Optional[Dict[str, Any]]) -> "ReconcileContext":
        """Fold a patch echo into a new context; a non-object echo is ignored."""
        if not isinstance(obj, dict):
            return self
        return replace(self, object=obj)

    def with_impersonate_user(self, user: Optional[str]) -> "ReconcileContext":
        return replace(self, impersonate_user=user)


def adopt(ctx: ReconcileContext, result: Any) -> ReconcileContext:
    """Use a hook's returned context when it returned one."""
    return result if isinstance(result, ReconcileContext) else ctx


async def patch_self(
    client: ResourceClient,
    ctx: ReconcileContext,
    body: Any,
    status: bool = False,
) -> Dict[str, Any]:
    """
    Patch the resource being reconciled and return the server's echo.

    A dict is sent as a merge patch and a list as a JSON Patch. The
    Impersonate-User header is always cleared: the controller may update
    its own resource whoever it is impersonating.

    Raises:
        ControllerError: If body is neither a dict nor a list.
        ApiError: If the API rejects the patch.
    """
    if not isinstance(body, (dict, list)):
        raise ControllerError("Patch requires an Object or an Array")

    headers = {IMPERSONATE_USER_HEADER: None}
    if isinstance(body, list):
        res = await client.patch(ctx.name, ctx.namespace, body, status, headers)
    else:
        res = await client.merge_patch(ctx.name, ctx.namespace, body, status, headers)

    if not res.ok:
        raise ApiError.from_response(res)
    return res.body
