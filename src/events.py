"""
Watch events delivered to the controller.

The event source is external; this module only validates what it hands
over. Events are ephemeral and consumed by a single reconcile pass.
"""

from enum import Enum
from typing import Any, Dict

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from errors import ValidationError


class EventType(Enum):
    """Types of watch events."""

    ADDED = "ADDED"
    MODIFIED = "MODIFIED"
    DELETED = "DELETED"
    POLLED = "POLLED"


class WatchEvent(BaseModel):
    """A single watch notification: an event type and the resource snapshot."""

    type: EventType
    object: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_watch(cls, data: Any) -> "WatchEvent":
        """
        Validate raw watch data.

        Args:
            data: A WatchEvent or a mapping with "type" and "object" keys.

        Returns:
            The validated WatchEvent.

        Raises:
            ValidationError: If the event type is not recognized.
        """
        if isinstance(data, cls):
            return data
        try:
            return cls.model_validate(data)
        except PydanticValidationError as e:
            raise ValidationError(
                f"Unrecognized object received from watch event: {e.errors()[0]['msg']}"
            ) from e
