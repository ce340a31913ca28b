"""
Finalizer State Machine - the deletion guard lifecycle.

NO_FINALIZER -> REGISTERED: the entry is appended with the current
resourceVersion as a precondition; a 409 fails the pass and the next
delivery retries.
REGISTERED -> CLEANUP_RUNNING: once a deletionTimestamp shows up, the status
marker is set to "running" and the cleanup hook runs.
CLEANUP_RUNNING -> REMOVED: the entry is removed; a 404 means the resource is
already gone.

Cleanup hooks must tolerate being called again after a partial failure.
"""

import logging
from enum import Enum
from typing import Any, Awaitable, Callable, List, Optional, Tuple

from context import (
    FINALIZER_CLEANUP_STATUS,
    ReconcileContext,
    adopt,
    patch_self,
)
from errors import NotFoundError
from kube import ResourceClient
from tree import get_path

logger = logging.getLogger(__name__)

CleanupHook = Callable[[ReconcileContext], Awaitable[Any]]


class FinalizerState(Enum):
    """Where a resource stands in the finalizer lifecycle."""

    NO_FINALIZER = "NoFinalizer"
    REGISTERED = "Registered"
    CLEANUP_RUNNING = "CleanupRunning"
    REMOVED = "Removed"


def get_finalizers(obj: Any) -> List[str]:
    return list(get_path(obj, ["metadata", "finalizers"]) or [])


async def _no_cleanup(ctx: ReconcileContext) -> None:
    logger.info("finalizer cleanup: no action taken")


class FinalizerStateMachine:
    """
    Manages exactly one finalizer entry on the reconciled resource.

    Without a finalizer string the machine is a pass-through that only
    reports whether a deletion timestamp is present.
    """

    def __init__(
        self,
        finalizer_string: Optional[str],
        client: ResourceClient,
        cleanup: Optional[CleanupHook] = None,
        log: Optional[logging.Logger] = None,
    ):
        self.finalizer_string = finalizer_string
        self.client = client
        self.cleanup = cleanup or _no_cleanup
        self.log = log or logger

    def state(self, obj: Any) -> FinalizerState:
        """
        Report where obj stands in the lifecycle.

        The running marker is never cleared, so a deleting resource carrying
        it stays CLEANUP_RUNNING even after the entry is removed.
        """
        deleting = get_path(obj, ["metadata", "deletionTimestamp"]) is not None
        running = get_path(obj, ["status", FINALIZER_CLEANUP_STATUS]) == "running"
        registered = bool(self.finalizer_string) and (
            self.finalizer_string in get_finalizers(obj)
        )
        if deleting and running:
            return FinalizerState.CLEANUP_RUNNING
        if registered:
            return FinalizerState.REGISTERED
        if deleting:
            return FinalizerState.REMOVED
        return FinalizerState.NO_FINALIZER

    async def run(self, ctx: ReconcileContext) -> Tuple[bool, ReconcileContext]:
        """
        Advance the lifecycle by one step.

        Returns:
            (has_deletion_timestamp, latest context)

        Raises:
            ConflictError: If registering raced with another writer.
            ApiError: If cleanup or removal failed for any reason but 404.
        """
        has_deletion_timestamp = ctx.has_deletion_timestamp
        if not self.finalizer_string:
            return has_deletion_timestamp, ctx

        finalizers = get_finalizers(ctx.object)
        registered = self.finalizer_string in finalizers

        if has_deletion_timestamp:
            if registered:
                ctx = await self._cleanup_and_remove(ctx, finalizers)
        elif not registered:
            finalizers.append(self.finalizer_string)
            res = await patch_self(
                self.client,
                ctx,
                {
                    "metadata": {
                        "resourceVersion": ctx.resource_version,
                        "finalizers": finalizers,
                    }
                },
            )
            ctx = ctx.with_object(res)

        return has_deletion_timestamp, ctx

    async def _cleanup_and_remove(
        self, ctx: ReconcileContext, finalizers: List[str]
    ) -> ReconcileContext:
        uri = self.client.uri(ctx.name, ctx.namespace)

        # marks the pass so overlapping deliveries skip starting cleanup again
        res = await patch_self(
            self.client,
            ctx,
            {"status": {FINALIZER_CLEANUP_STATUS: "running"}},
            status=True,
        )
        ctx = ctx.with_object(res)

        self.log.debug(f"FinalizerCleanup Started: {uri}")
        ctx = adopt(ctx, await self.cleanup(ctx))
        self.log.debug(f"FinalizerCleanup Completed: {uri}")

        remaining = [f for f in finalizers if f != self.finalizer_string]
        try:
            # another controller may drop its entry first, in which case the
            # stale list is rejected and the next pass tries again
            res = await patch_self(
                self.client, ctx, {"metadata": {"finalizers": remaining}}
            )
        except NotFoundError:
            self.log.debug(f"Resource already deleted: {uri}")
            return ctx
        return ctx.with_object(res)
