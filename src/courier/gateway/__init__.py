"""Unified Courier ingress gateway and reply routing."""

from courier.gateway.models import DeliveredReply, InboundEvent, ProcessedEventResult
from courier.gateway.router import ReplyRouter
from courier.gateway.service import CourierGateway

__all__ = [
    "CourierGateway",
    "DeliveredReply",
    "InboundEvent",
    "ProcessedEventResult",
    "ReplyRouter",
]
