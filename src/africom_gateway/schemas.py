"""Payloads accepted by the delivery tasks."""

from typing import Any

from pydantic import BaseModel, Field

from africom_gateway.enums import Channel
from africom_gateway.providers.base import SendOptions


class SendRequest(BaseModel):
    recipient: str = Field(min_length=1)
    message: str = Field(min_length=1)
    sender_id: str = Field(min_length=1)
    country: str = Field(min_length=2, max_length=2)
    network: str | None = None
    channel: Channel = Channel.SMS
    message_id: str | None = None
    subject: str | None = None
    # Scopes the rate limit to one account when set.
    account_id: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    def to_options(self) -> SendOptions:
        return SendOptions(
            recipient=self.recipient,
            message=self.message,
            sender_id=self.sender_id,
            message_id=self.message_id,
            subject=self.subject,
            metadata=self.metadata,
        )


class BulkSendRequest(BaseModel):
    recipients: list[str] = Field(min_length=1)
    message: str = Field(min_length=1)
    sender_id: str = Field(min_length=1)
    country: str = Field(min_length=2, max_length=2)
    network: str | None = None
    channel: Channel = Channel.SMS
    subject: str | None = None
    batch_id: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
