from enum import StrEnum


class Channel(StrEnum):
    SMS = "sms"
    EMAIL = "email"


class SendStatus(StrEnum):
    SUBMITTED = "submitted"
    SENT = "sent"
    DELIVERED = "delivered"
    FAILED = "failed"
    REJECTED = "rejected"
    INVALID_PARAMETERS = "invalid_parameters"
    AUTHENTICATION_ERROR = "authentication_error"
    INSUFFICIENT_CREDIT = "insufficient_credit"
    PROVIDER_ERROR = "provider_error"


class DeliveryState(StrEnum):
    SENT = "sent"
    DELIVERED = "delivered"
    FAILED = "failed"
    PENDING = "pending"
    UNKNOWN = "unknown"


class SelectionCriterion(StrEnum):
    COST = "cost"
    SPEED = "speed"
    RELIABILITY = "reliability"


# Error codes produced by the router itself rather than by an upstream.
NO_PROVIDER = "NO_PROVIDER"
ALL_FAILED = "ALL_FAILED"
ROUTING_ERROR = "ROUTING_ERROR"
CANCELLED = "CANCELLED"
ADAPTER_EXCEPTION = "ADAPTER_EXCEPTION"

# Sentinel provider ids for outcomes not attributable to one adapter.
PROVIDER_NONE = "none"
PROVIDER_MULTIPLE = "multiple"
PROVIDER_ROUTER = "router"
