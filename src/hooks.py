"""
Controller hooks - the domain logic a concrete controller supplies.

Every hook has a working default, so a controller only overrides what it
needs. Hooks receive the BaseController (for apply/replace/logging helpers)
and the current ReconcileContext; a hook that writes to its own resource
should return the updated context, anything else it returns is ignored.
"""

from typing import TYPE_CHECKING, Any, Dict, Optional

from hashing import default_data_to_hash

if TYPE_CHECKING:
    from context import ReconcileContext
    from controller import BaseController


class ControllerHooks:
    """
    Default hooks.

    finalizer_cleanup() must be safe to call more than once: when removing
    the finalizer fails after a successful cleanup, the next delivery runs
    cleanup again.
    """

    async def added(
        self, controller: "BaseController", ctx: "ReconcileContext"
    ) -> Optional["ReconcileContext"]:
        """Handle an ADDED or POLLED resource."""
        controller.log.info(f"added {controller.self_link(ctx)}: {ctx.object}")
        return None

    async def modified(
        self, controller: "BaseController", ctx: "ReconcileContext"
    ) -> Optional["ReconcileContext"]:
        """Handle a significant change; defaults to the added flow."""
        return await controller.process_added(ctx)

    async def deleted(
        self, controller: "BaseController", ctx: "ReconcileContext"
    ) -> Optional["ReconcileContext"]:
        """Handle a DELETED resource. Finalizer cleanup has already run."""
        controller.log.info(f"deleted {controller.self_link(ctx)}: {ctx.object}")
        return None

    async def finalizer_cleanup(
        self, controller: "BaseController", ctx: "ReconcileContext"
    ) -> Optional["ReconcileContext"]:
        """Release external state before the finalizer is removed."""
        controller.log.info("finalizer cleanup: no action taken")
        return None

    def data_to_hash(self, resource: Dict[str, Any]) -> Any:
        """
        Select the data whose change should run modified().

        Override to watch other fields as well.
        """
        return default_data_to_hash(resource)
