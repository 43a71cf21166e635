"""Report publication

Publication is fire-and-forget: failures are logged by the caller and never
retried.
"""

from typing import Any, Dict, List, Optional, Protocol, Tuple
from urllib.parse import quote

import aiohttp

from ..utils.config import get_events_config
from ..utils.logging import get_logger

logger = get_logger("events")


class ReportPublisher(Protocol):
    async def publish(self, topic: str, payload: Dict[str, Any]) -> None:
        ...


class InMemoryPublisher:
    """Collects published reports; used in tests and local runs"""

    def __init__(self):
        self.published: List[Tuple[str, Dict[str, Any]]] = []

    async def publish(self, topic: str, payload: Dict[str, Any]) -> None:
        self.published.append((topic, payload))

    def reports_for(self, topic: str) -> List[Dict[str, Any]]:
        return [payload for published_topic, payload in self.published if published_topic == topic]


class RestReportPublisher:
    """Publishes through a broker's REST messaging gateway.

    Messages are POSTed as JSON to ``<base_url>/TOPIC/<topic>``.
    """

    def __init__(self, base_url: Optional[str] = None, timeout: Optional[float] = None,
                 session: Optional[aiohttp.ClientSession] = None,
                 auth: Optional[aiohttp.BasicAuth] = None):
        events_config = get_events_config()
        self.base_url = (base_url or events_config.broker_rest_url or "").rstrip("/")
        if not self.base_url:
            raise ValueError("RestReportPublisher needs a broker REST URL (BROKER_REST_URL)")
        self.timeout = timeout if timeout is not None else events_config.publish_timeout
        self.auth = auth
        self._session = session
        self._owns_session = session is None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout))
            self._owns_session = True
        return self._session

    def url_for(self, topic: str) -> str:
        return f"{self.base_url}/TOPIC/{quote(topic, safe='/')}"

    async def publish(self, topic: str, payload: Dict[str, Any]) -> None:
        """POST one report; raises aiohttp.ClientError on transport or HTTP errors."""
        url = self.url_for(topic)
        async with self._get_session().post(url, json=payload, auth=self.auth) as response:
            response.raise_for_status()
        logger.info("report_published", topic=topic, url=url)

    async def close(self):
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None
