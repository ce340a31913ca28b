"""Unit tests for watch event validation."""

import pytest

from errors import ValidationError
from events import EventType, WatchEvent

# ==================== EventType tests ====================


class TestEventType:
    """Tests for the EventType enum."""

    def test_values(self):
        assert [t.value for t in EventType] == ["ADDED", "MODIFIED", "DELETED", "POLLED"]


# ==================== WatchEvent tests ====================


class TestWatchEvent:
    """Tests for WatchEvent.from_watch."""

    def test_from_mapping(self, sample_resource):
        event = WatchEvent.from_watch({"type": "MODIFIED", "object": sample_resource})
        assert event.type is EventType.MODIFIED
        assert event.object == sample_resource

    def test_instance_is_returned_as_is(self, sample_resource):
        event = WatchEvent(type=EventType.ADDED, object=sample_resource)
        assert WatchEvent.from_watch(event) is event

    def test_missing_object_defaults_to_empty(self):
        assert WatchEvent.from_watch({"type": "DELETED"}).object == {}

    @pytest.mark.parametrize("event_type", ["BOOKMARK", "added", None, ""])
    def test_unrecognized_type(self, event_type, sample_resource):
        with pytest.raises(ValidationError, match="Unrecognized object"):
            WatchEvent.from_watch({"type": event_type, "object": sample_resource})

    def test_not_a_mapping(self):
        with pytest.raises(ValidationError):
            WatchEvent.from_watch("ADDED")

    def test_object_must_be_mapping(self):
        with pytest.raises(ValidationError):
            WatchEvent.from_watch({"type": "ADDED", "object": ["a"]})
