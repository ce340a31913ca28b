"""
Status Log Reconciler - the razee-logs trail in resource status.

Logs live under status["razee-logs"][level][hash]. Each entry is keyed by the
hash of its message, so rewriting the same message is idempotent. At the end
of a pass every entry not written during that pass is nulled out.
"""

import logging
from typing import Any, Dict

from context import RAZEE_LOGS, ReconcileContext, patch_self
from hashing import compute_data_hash
from kube import ResourceClient

logger = logging.getLogger(__name__)


async def update_razee_logs(
    client: ResourceClient,
    ctx: ReconcileContext,
    level: str,
    message: Any,
) -> ReconcileContext:
    """
    Add a log entry to the resource status.

    Args:
        client: Client for the reconciled resource.
        ctx: Current context.
        level: Log level key, e.g. "info" or "error".
        message: Any JSON-serializable message.

    Returns:
        Context holding the patched object.
    """
    log_hash = compute_data_hash(message)
    ctx.seen_log_hashes.add(log_hash)

    patch_obj = {"status": {RAZEE_LOGS: {level: {log_hash: message}}}}
    res = await patch_self(client, ctx, patch_obj, status=True)
    return ctx.with_object(res)


def build_log_reconcile_patch(live_logs: Any, seen: set) -> Dict[str, Any]:
    """
    Compute the razee-logs patch value for the end of a pass.

    Live entries seen this pass keep their value, the rest become None. A
    level left with only None entries collapses to None, and when every
    level collapses the whole razee-logs key becomes None.
    """
    patch_logs: Dict[str, Any] = {}
    for level, entries in (live_logs or {}).items():
        level_patch = {
            log_hash: (message if log_hash in seen else None)
            for log_hash, message in (entries or {}).items()
        }
        if all(v is None for v in level_patch.values()):
            patch_logs[level] = None
        else:
            patch_logs[level] = level_patch

    if all(v is None for v in patch_logs.values()):
        return {RAZEE_LOGS: None}
    return {RAZEE_LOGS: patch_logs}


async def reconcile_razee_logs(
    client: ResourceClient, ctx: ReconcileContext
) -> ReconcileContext:
    """Clear out status logs that were not written during this pass."""
    live_logs = ctx.get(["status", RAZEE_LOGS], {})
    patch_obj = build_log_reconcile_patch(live_logs, ctx.seen_log_hashes)
    logger.debug(f"Reconciling razee-logs for {ctx.name}: {patch_obj}")

    res = await patch_self(client, ctx, {"status": patch_obj}, status=True)
    return ctx.with_object(res)
