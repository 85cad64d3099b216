"""HTTPS reachability probe for published artifacts."""

from __future__ import annotations

from typing import Optional

import httpx
import structlog

from stackdeploy.utils.logging import get_logger

logger = get_logger("publisher.probe")


class ReachabilityProbe:
    """
    Issues an HTTP HEAD against an object URL.

    Only a 200 counts as reachable. A private bucket answers anonymous
    requests with 403 even though CloudFormation can read the object with the
    caller's credentials, so the result is advisory.
    """

    def __init__(
        self,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        log: Optional[structlog.stdlib.BoundLogger] = None,
    ) -> None:
        self.timeout = timeout
        self.transport = transport
        self.log = log or logger

    async def check(self, url: str) -> bool:
        """Return True when ``url`` answers HEAD with 200."""
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.head(url)
        except httpx.HTTPError as e:
            self.log.warning("probe_failed", url=url, error=str(e))
            return False

        self.log.debug("probe_completed", url=url, status_code=response.status_code)
        return response.status_code == 200
