"""Reply pipeline: payloads, dispatchers, delivery and turn dispatch."""

from courier.reply.delivery import AcpDeliveryCoordinator, DeliveryMeta, DispatchContext
from courier.reply.dispatch_acp import AcpDispatchResult, try_dispatch_acp_reply
from courier.reply.dispatcher import QueuedReplyDispatcher, ReplyDispatcher
from courier.reply.payload import ReplyDispatchKind, ReplyPayload, has_visible_content
from courier.reply.stream import AcpReplyProjection

__all__ = [
    "AcpDeliveryCoordinator",
    "AcpDispatchResult",
    "AcpReplyProjection",
    "DeliveryMeta",
    "DispatchContext",
    "QueuedReplyDispatcher",
    "ReplyDispatchKind",
    "ReplyDispatcher",
    "ReplyPayload",
    "has_visible_content",
    "try_dispatch_acp_reply",
]
