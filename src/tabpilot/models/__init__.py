"""Model endpoint clients and the streaming response decoder."""

from .client import AiohttpChatTransport, ChatTransport, VisionClient
from .streaming import DecodedResponse, StreamDecoder, StreamState

__all__ = [
    "ChatTransport",
    "AiohttpChatTransport",
    "VisionClient",
    "StreamDecoder",
    "StreamState",
    "DecodedResponse",
]
