"""
Marketplace service: realtime event definitions

Events are past-tense facts pushed to subscribed connections after the state
they describe has been committed. `name` is the wire event type; the payload
is serialized with camelCase aliases where the client expects them.
"""

from typing import ClassVar

from pydantic import BaseModel, ConfigDict, Field


class HubEvent(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    name: ClassVar[str] = "event"

    def to_frame(self) -> dict:
        return {"event": self.name, "data": self.model_dump(mode="json", by_alias=True)}


class NewOrder(HubEvent):
    """A purchase was committed (sent to the admin group)."""
    name: ClassVar[str] = "new_order"

    order_id: int = Field(alias="orderId")
    package: str
    price: float


class ChatMessage(HubEvent):
    """A chat message was appended to an order thread."""
    name: ClassVar[str] = "message"

    order_id: int = Field(alias="orderId")
    author: str | None
    content: str
    created_at: str
