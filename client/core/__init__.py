from .network import Message, NetworkError, TraceClient, decode_message

__all__ = ["TraceClient", "NetworkError", "Message", "decode_message"]
