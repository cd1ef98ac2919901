"""
Telemetry Event Sink

Fire-and-forget delivery of product analytics events (rate limit hits,
tailoring failures) to an Umami-compatible collect endpoint.

Delivery never blocks and never fails the request that produced the event:
events are scheduled as background tasks and every delivery error is logged
and dropped. A bounded in-memory mirror of recent events is always kept so
operators can inspect them without the remote sink.
"""

import json
import asyncio
import logging
import threading
import collections
from enum import Enum
from datetime import datetime, timezone
from typing import Optional, Dict, Any, List, Set

import httpx

from tailor_service.config import settings

logger = logging.getLogger(__name__)


class TelemetryEventType(str, Enum):
    """Telemetry event names"""
    MODEL_RATE_LIMIT_HIT = "MODEL_RATE_LIMIT_HIT"
    UPSTREAM_GLOBAL_LIMIT_HIT = "UPSTREAM_GLOBAL_LIMIT_HIT"
    RESUME_TAILOR_ERROR = "resume_tailor_error"


class RecentEventBuffer:
    """Thread-safe ring buffer of the most recent events."""

    def __init__(self, maxlen: int = 200):
        self._events = collections.deque(maxlen=maxlen)
        self._lock = threading.Lock()

    def publish(self, event: dict):
        with self._lock:
            self._events.append(event)

    def snapshot(self) -> List[dict]:
        with self._lock:
            return list(self._events)

    def clear(self):
        with self._lock:
            self._events.clear()


class TelemetryClient:
    """
    Sends events to the remote collector.

    Disabled (mirror only) when no collector URL or website id is configured,
    or when running in development.
    """

    def __init__(
        self,
        url: Optional[str] = None,
        website_id: Optional[str] = None,
        api_key: Optional[str] = None,
        environment: str = "development",
        timeout: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = url
        self.website_id = website_id
        self.api_key = api_key
        self.environment = environment
        self.timeout = timeout
        self._transport = transport
        self.recent = RecentEventBuffer()
        self._pending: Set[asyncio.Task] = set()

    @property
    def enabled(self) -> bool:
        return bool(self.url and self.website_id) and self.environment != "development"

    def _build_event(self, event_type: TelemetryEventType, path: str, data: Dict[str, Any]) -> dict:
        return {
            "website": self.website_id,
            "hostname": "api",
            "url": path,
            "name": event_type.value,
            "data": json.dumps(data, default=str),
        }

    async def send(self, event_type: TelemetryEventType, data: Dict[str, Any], path: str = "/api") -> bool:
        """
        Deliver one event. Never raises.

        Returns:
            True if the collector accepted the event
        """
        self.recent.publish({
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "name": event_type.value,
            "url": path,
            "data": data,
        })

        if not self.enabled:
            logger.debug(f"Telemetry disabled, not sending {event_type.value}")
            return False

        headers = {"Content-Type": "application/json", "User-Agent": "resume-tailor-service/1.0"}
        if self.api_key:
            headers["x-umami-api-key"] = self.api_key

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(
                    f"{self.url.rstrip('/')}/api/send",
                    json={"type": "event", "payload": self._build_event(event_type, path, data)},
                    headers=headers,
                )
            if response.status_code >= 400:
                logger.error(f"Telemetry collector rejected {event_type.value}: {response.status_code}")
                return False
            return True
        except Exception as e:
            logger.error(f"Failed to send telemetry event {event_type.value}: {e}")
            return False

    def emit(
        self,
        event_type: TelemetryEventType,
        data: Dict[str, Any],
        path: str = "/api",
    ) -> Optional[asyncio.Task]:
        """
        Schedule delivery in the background and return immediately.

        Returns:
            The scheduled task, or None when no event loop is running
        """
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug(f"No running event loop, dropping telemetry event {event_type.value}")
            return None

        task = loop.create_task(self.send(event_type, data, path))
        # Hold a reference until the task finishes so it is not collected mid-flight
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task


# Global telemetry client
_telemetry_client: Optional[TelemetryClient] = None


def get_telemetry_client() -> TelemetryClient:
    global _telemetry_client
    if _telemetry_client is None:
        _telemetry_client = TelemetryClient(
            url=settings.TELEMETRY_URL,
            website_id=settings.TELEMETRY_WEBSITE_ID,
            api_key=settings.TELEMETRY_API_KEY,
            environment=settings.ENVIRONMENT,
        )
    return _telemetry_client


def emit_telemetry_event(
    event_type: TelemetryEventType,
    data: Dict[str, Any],
    path: str = "/api",
) -> Optional[asyncio.Task]:
    """
    Convenience function to emit a telemetry event without waiting for it.

    Any error while scheduling is swallowed.
    """
    try:
        return get_telemetry_client().emit(event_type, data, path)
    except Exception as e:
        logger.error(f"Failed to schedule telemetry event {event_type.value}: {e}")
        return None
