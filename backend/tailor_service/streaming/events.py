"""
Server-Sent Events framing and the per-run output channel.
"""

import json
import asyncio
import logging
from typing import Any, AsyncIterator, List, Optional

logger = logging.getLogger(__name__)

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
}


def format_sse(event: str, data: Any) -> str:
    """Encode one frame as ``event: <type>\\ndata: <json>\\n\\n``."""
    return f"event: {event}\ndata: {json.dumps(data)}\n\n"


class EventStream:
    """
    Channel between a pipeline run (producer) and the HTTP response (consumer).

    Once closed, by the producer finishing or by the consumer going away,
    every ``send`` is a no-op that returns False.
    """

    _END = None

    def __init__(self):
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False
        self.frames_written = 0

    @property
    def closed(self) -> bool:
        return self._closed

    def send(self, event: str, data: Any) -> bool:
        if self._closed:
            return False
        self._queue.put_nowait(format_sse(event, data))
        self.frames_written += 1
        return True

    def close(self) -> None:
        """Producer is done; the consumer drains what is queued and stops."""
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(self._END)

    def abort(self) -> None:
        """Consumer went away."""
        if not self._closed:
            logger.info("Event stream aborted by client")
        self.close()

    async def frames(self) -> AsyncIterator[str]:
        while True:
            frame = await self._queue.get()
            if frame is self._END:
                return
            yield frame

    def drain(self) -> List[str]:
        """Return every frame queued so far without waiting."""
        frames: List[str] = []
        while True:
            try:
                frame: Optional[str] = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                return frames
            if frame is not self._END:
                frames.append(frame)
