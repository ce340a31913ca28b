"""Unit tests for context.py - the reconcile context."""

import pytest

from context import RECONCILE_LABEL, ReconcileContext, adopt, patch_self
from errors import ControllerError, NotFoundError
from events import EventType, WatchEvent
from kube import ApiResponse


class TestReconcileContext:
    """Tests for ReconcileContext accessors and derivation."""

    def test_from_event_copies_object(self, sample_resource):
        event = WatchEvent(type=EventType.ADDED, object=sample_resource)
        ctx = ReconcileContext.from_event(event)
        ctx.object["metadata"]["name"] = "changed"
        assert event.object["metadata"]["name"] == "mt-sample"
        assert ctx.event_type is EventType.ADDED

    def test_accessors(self, sample_resource):
        ctx = ReconcileContext(EventType.MODIFIED, sample_resource)
        assert ctx.name == "mt-sample"
        assert ctx.namespace == "razee-test"
        assert ctx.resource_version == "100"
        assert ctx.has_deletion_timestamp is False
        assert ctx.has(["spec", "env"]) is True
        assert ctx.has(["spec", "missing"]) is False

    def test_reconcile_default(self, sample_resource):
        assert ReconcileContext(None, sample_resource).reconcile_default == "true"
        sample_resource["metadata"]["labels"][RECONCILE_LABEL] = "false"
        assert ReconcileContext(None, sample_resource).reconcile_default == "false"

    def test_with_object_shares_log_hashes(self, sample_resource):
        ctx = ReconcileContext(EventType.ADDED, sample_resource)
        derived = ctx.with_object({"metadata": {"name": "echo"}})
        derived.seen_log_hashes.add("abc")
        assert ctx.seen_log_hashes == {"abc"}
        assert derived.name == "echo"
        assert ctx.name == "mt-sample"

    def test_with_object_ignores_non_object_echo(self, sample_resource):
        ctx = ReconcileContext(EventType.ADDED, sample_resource)
        assert ctx.with_object("ok") is ctx
        assert ctx.with_object(None) is ctx

    def test_is_immutable(self, sample_resource):
        ctx = ReconcileContext(EventType.ADDED, sample_resource)
        with pytest.raises(AttributeError):
            ctx.object = {}

    def test_from_raw(self, sample_resource):
        ctx = ReconcileContext.from_raw({"type": "BOOKMARK", "object": sample_resource})
        assert ctx.event_type is None
        assert ctx.name == "mt-sample"
        assert ReconcileContext.from_raw("garbage").object == {}

    def test_adopt(self, sample_resource):
        ctx = ReconcileContext(EventType.ADDED, sample_resource)
        other = ctx.with_impersonate_user("alice")
        assert adopt(ctx, other) is other
        assert adopt(ctx, None) is ctx
        assert adopt(ctx, {"not": "a context"}) is ctx


@pytest.mark.asyncio
class TestPatchSelf:
    """Tests for patching the reconciled resource."""

    async def test_rejects_scalar_body(self, make_client, sample_resource):
        ctx = ReconcileContext(EventType.ADDED, sample_resource)
        with pytest.raises(ControllerError, match="Object or an Array"):
            await patch_self(make_client(sample_resource), ctx, "spec")

    async def test_dict_is_merge_patch(self, make_client, sample_resource):
        client = make_client(sample_resource)
        ctx = ReconcileContext(EventType.ADDED, sample_resource)

        body = await patch_self(client, ctx, {"status": {"phase": "Ready"}}, status=True)

        assert body["status"]["phase"] == "Ready"
        call = client.calls_of("merge_patch")[0]
        assert call["name"] == "mt-sample"
        assert call["namespace"] == "razee-test"
        assert call["status"] is True

    async def test_failure_raises(self, make_client, sample_resource):
        client = make_client(sample_resource)
        client.script["patch"] = [ApiResponse(404, {"message": "gone"})]
        ctx = ReconcileContext(EventType.ADDED, sample_resource)

        with pytest.raises(NotFoundError):
            await patch_self(client, ctx, [{"op": "add", "path": "/a", "value": 1}])
