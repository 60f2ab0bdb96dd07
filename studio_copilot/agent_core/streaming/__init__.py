"""Best-effort, in-memory progress streaming."""

from .bus import StreamBus, StreamChunk, StreamSlice

__all__ = ["StreamBus", "StreamChunk", "StreamSlice"]
