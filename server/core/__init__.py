from .connection import TraceStreamerConnection
from .mailbox import PendingPush, PushRequest
from .server import TraceStreamer
from .transport import Socket

__all__ = ["TraceStreamerConnection", "PendingPush", "PushRequest", "TraceStreamer", "Socket"]
