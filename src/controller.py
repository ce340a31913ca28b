"""
Base Controller - event dispatch for razee custom resources.

A concrete controller supplies ControllerHooks and a client for its resource
kind; BaseController.execute() then handles one watch event end to end:
impersonation, cluster lock, change detection, finalizers and the status log
trail. execute() never raises: failures end up as "error" entries in the
resource's razee-logs.
"""

import json
import logging
from typing import Any, Dict, List, Optional

import apply as apply_engine
from config import ControllerConfig, FlagConfig
from context import (
    DATA_HASH_ANNOTATION,
    IMPERSONATE_USER_HEADER,
    IMPERSONATE_USER_PATH,
    IMPERSONATE_USER_UNSET,
    ReconcileContext,
    adopt,
    patch_self,
)
from errors import NotFoundError, normalize_errors
from events import EventType, WatchEvent
from finalizers import FinalizerState, FinalizerStateMachine, get_finalizers
from hashing import compute_data_hash, has_changed
from hooks import ControllerHooks
from kube import ApiResponse, ResourceClient, get_secret_data
from patch import build_patch
from razee_logs import reconcile_razee_logs, update_razee_logs
from tree import Path

logger = logging.getLogger(__name__)


class BaseController:
    """
    Reconciles watch events for one resource kind.

    The impersonation header lives on the client and is cleared at the start
    of every pass, so events sharing a client must be processed one at a
    time.
    """

    def __init__(
        self,
        client: ResourceClient,
        hooks: Optional[ControllerHooks] = None,
        config: Optional[ControllerConfig] = None,
        flags: Optional[Any] = None,
        finalizer_string: Optional[str] = None,
        log: Optional[logging.Logger] = None,
    ):
        self.client = client
        self.hooks = hooks or ControllerHooks()
        self.config = config or ControllerConfig()
        self.flags = flags or FlagConfig.from_env()
        self.log = log or logger
        self.finalizer_string = finalizer_string or self.config.finalizer_string

        self.finalizer = FinalizerStateMachine(
            self.finalizer_string,
            client,
            cleanup=self._finalizer_cleanup,
            log=self.log,
        )

    def self_link(self, ctx: ReconcileContext) -> str:
        return self.client.uri(ctx.name, ctx.namespace)

    def _describe(self, ctx: ReconcileContext) -> str:
        event_type = ctx.event_type.value if ctx.event_type else "UNKNOWN"
        return f"{event_type} event {self.self_link(ctx)} {ctx.resource_version}"

    # Dispatch =================================================================

    async def execute(self, event: Any) -> Optional[ReconcileContext]:
        """
        Process one watch event to completion.

        Args:
            event: WatchEvent or raw {"type": ..., "object": ...} mapping.

        Returns:
            The final context of the pass, or None if nothing could be done.
        """
        ctx: Optional[ReconcileContext] = None
        self.client.add_header(IMPERSONATE_USER_HEADER, None)
        try:
            watch = WatchEvent.from_watch(event)
            ctx = ReconcileContext.from_event(watch)

            ctx, proceed = await self.preprocess_impersonation(ctx)
            if not proceed:
                return ctx
            ctx = self.process_impersonation(ctx)

            self.log.info(
                f"{watch.type.value} event received {self.self_link(ctx)} "
                f"{ctx.resource_version}"
            )
            if self.flags.is_cluster_locked():
                self.log.info(
                    f"Cluster lock has been set.. skipping {self._describe(ctx)}"
                )
                ctx = await update_razee_logs(
                    self.client, ctx, "info", {"cluster-locked": True}
                )
                return await reconcile_razee_logs(self.client, ctx)

            if watch.type in (EventType.ADDED, EventType.POLLED):
                ctx = await self.process_added(ctx)
            elif watch.type is EventType.MODIFIED:
                ctx = await self.process_modified(ctx)
            elif watch.type is EventType.DELETED:
                ctx = await self.process_deleted(ctx)
            return ctx
        except Exception as e:
            if ctx is None:
                ctx = ReconcileContext.from_raw(event)
            return await self._record_failure(ctx, e)

    async def _record_failure(
        self, ctx: ReconcileContext, err: Exception
    ) -> ReconcileContext:
        try:
            self.error_handler(ctx, err)
            for message in normalize_errors(err):
                ctx = await update_razee_logs(self.client, ctx, "error", message)
            return await reconcile_razee_logs(self.client, ctx)
        except Exception as e:
            self.log.error(f"{self.self_link(ctx)}: failed to record errors - {e}")
            return ctx

    def error_handler(self, ctx: ReconcileContext, err: Any) -> None:
        """Log a failure locally before it is written to the status log."""
        if isinstance(err, (dict, list)):
            try:
                err = json.dumps(err, default=str)
            except (TypeError, ValueError) as e:
                self.log.error(
                    f"{self.self_link(ctx)}: failing to stringify error object - {e}"
                )
        self.log.error(f"{self.self_link(ctx)}: {err}")

    # Impersonation ============================================================

    async def preprocess_impersonation(self, ctx: ReconcileContext):
        """
        Reset a disallowed impersonation identity.

        An unset identity, or an identity other than the default while
        impersonation is disabled outside the trusted namespace, is patched
        to the default user. The pass stops there and the patch triggers a
        new event.

        Returns:
            (context, proceed)
        """
        default_user = self.config.default_user
        enabled = self.flags.is_impersonation_enabled()
        user = ctx.get(IMPERSONATE_USER_PATH, IMPERSONATE_USER_UNSET)
        if user == IMPERSONATE_USER_UNSET or (
            not enabled
            and user != default_user
            and ctx.namespace != self.config.trusted_namespace
        ):
            res = await patch_self(
                self.client,
                ctx,
                {"spec": {"clusterAuth": {"impersonateUser": default_user}}},
            )
            return ctx.with_object(res), False
        return ctx, True

    def process_impersonation(self, ctx: ReconcileContext) -> ReconcileContext:
        """
        Send this pass's API calls as the resource's declared identity.

        Without impersonation the header is explicitly cleared, so an
        identity never outlives the event that declared it.
        """
        default_user = self.config.default_user
        user = ctx.get(IMPERSONATE_USER_PATH, default_user)
        if user != default_user and not (
            self.flags.is_impersonation_enabled()
            or ctx.namespace == self.config.trusted_namespace
        ):
            user = default_user

        header = None if user == default_user else user
        self.client.add_header(IMPERSONATE_USER_HEADER, header)
        return ctx.with_impersonate_user(user)

    # Event flows ==============================================================

    def compute_data_hash(self, resource: Dict[str, Any]) -> str:
        return compute_data_hash(self.hooks.data_to_hash(resource))

    async def _patch_data_hash(
        self, ctx: ReconcileContext, data_hash: str
    ) -> ReconcileContext:
        res = await patch_self(
            self.client,
            ctx,
            {"metadata": {"annotations": {DATA_HASH_ANNOTATION: data_hash}}},
        )
        return ctx.with_object(res)

    async def _reconcile_logs_if_guarded(
        self, ctx: ReconcileContext
    ) -> ReconcileContext:
        # once the last finalizer is gone the resource may vanish at any time
        if not get_finalizers(ctx.object):
            return ctx
        try:
            return await reconcile_razee_logs(self.client, ctx)
        except NotFoundError:
            self.log.debug(f"Resource already deleted: {self.self_link(ctx)}")
            return ctx

    async def process_added(self, ctx: ReconcileContext) -> ReconcileContext:
        """ADDED/POLLED flow; also the default for a significant MODIFIED."""
        # keep the data-hash current so a following MODIFIED is not mistaken
        # for a significant change
        stored = ctx.get(["metadata", "annotations", DATA_HASH_ANNOTATION])
        computed = self.compute_data_hash(ctx.object)
        if has_changed(stored, computed):
            self.log.debug(
                f"Updating annotation {DATA_HASH_ANNOTATION} for "
                f"{self._describe(ctx)}"
            )
            ctx = await self._patch_data_hash(ctx, computed)

        self.log.debug(f"'Added' Finalizer {self.self_link(ctx)} started")
        has_deletion_timestamp, ctx = await self.finalizer.run(ctx)
        self.log.debug(
            f"'Added' Finalizer {self.self_link(ctx)} completed: "
            f"deletionTimestamp {has_deletion_timestamp}"
        )
        if has_deletion_timestamp:
            return await self._reconcile_logs_if_guarded(ctx)

        self.log.debug(f"added() {self.self_link(ctx)}")
        ctx = adopt(ctx, await self.hooks.added(self, ctx))
        self.log.debug(f"added() completed {self.self_link(ctx)}")
        return await reconcile_razee_logs(self.client, ctx)

    async def process_modified(self, ctx: ReconcileContext) -> ReconcileContext:
        """MODIFIED flow: finalizers on deletion, else hash-gated modified()."""
        if ctx.has_deletion_timestamp:
            if self.finalizer.state(ctx.object) is FinalizerState.CLEANUP_RUNNING:
                self.log.debug(
                    "Found deletionTimestamp.. but finalizer already running.. "
                    f"skipping {self._describe(ctx)}"
                )
                return ctx
            self.log.debug(
                f"Found deletionTimestamp.. running finalizer.. {ctx.resource_version}"
            )
            has_deletion_timestamp, ctx = await self.finalizer.run(ctx)
            self.log.debug(
                f"'Modified' Finalizer {self.self_link(ctx)} completed: "
                f"deletionTimestamp {has_deletion_timestamp}"
            )
            return await self._reconcile_logs_if_guarded(ctx)

        stored = ctx.get(["metadata", "annotations", DATA_HASH_ANNOTATION])
        computed = self.compute_data_hash(ctx.object)
        if not has_changed(stored, computed):
            self.log.info(f"No relevant change detected.. skipping {self._describe(ctx)}")
            return ctx

        self.log.debug(
            f"Last known {DATA_HASH_ANNOTATION} doesn't match computed.. "
            f"updating annotation and running modified().. {ctx.resource_version}"
        )
        ctx = await self._patch_data_hash(ctx, computed)
        return adopt(ctx, await self.hooks.modified(self, ctx))

    async def process_deleted(self, ctx: ReconcileContext) -> ReconcileContext:
        """DELETED flow: the resource is gone, only the hook runs."""
        return adopt(ctx, await self.hooks.deleted(self, ctx))

    async def _finalizer_cleanup(self, ctx: ReconcileContext) -> Any:
        return await self.hooks.finalizer_cleanup(self, ctx)

    # Helpers for hooks ========================================================

    async def patch_self(
        self, ctx: ReconcileContext, body: Any, status: bool = False
    ) -> ReconcileContext:
        """Patch the reconciled resource and continue with the echo."""
        return ctx.with_object(await patch_self(self.client, ctx, body, status))

    async def update_razee_logs(
        self, ctx: ReconcileContext, level: str, message: Any
    ) -> ReconcileContext:
        return await update_razee_logs(self.client, ctx, level, message)

    def build_patch(
        self, ctx: ReconcileContext, path: Path, value: Any, base: Any = None
    ) -> List[Dict[str, Any]]:
        """JSON Patch setting value at path, against the live object by default."""
        return build_patch(path, value, ctx.object if base is None else base)

    async def apply(
        self,
        client: ResourceClient,
        desired: Dict[str, Any],
        mode: Any = apply_engine.ApplyMode.MERGE_PATCH,
    ) -> ApiResponse:
        return await apply_engine.apply(client, desired, mode)

    async def replace(
        self,
        client: ResourceClient,
        desired: Dict[str, Any],
        hard: bool = False,
        force: bool = True,
    ) -> ApiResponse:
        return await apply_engine.replace(client, desired, hard=hard, force=force)

    async def ensure_exists(
        self, client: ResourceClient, desired: Dict[str, Any]
    ) -> ApiResponse:
        return await apply_engine.ensure_exists(client, desired)

    async def get_secret_data(
        self, name: str, key: str, namespace: str, as_bytes: bool = False
    ) -> Any:
        return await get_secret_data(self.client, name, key, namespace, as_bytes)
