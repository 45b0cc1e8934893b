"""
HTTP transport to the Tally gateway.

The gateway relays XML envelopes to the company's Tally instance and also
serves the JSON credit endpoint. Requests go through one `requests.Session`
on a worker thread so the coroutines never block the event loop.
"""
from __future__ import annotations
import asyncio
from typing import Any, Optional
import requests
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential
from loguru import logger

from .codec import build_list_groups_request
from .config import TallyOrderConfig
from .errors import (
    MalformedResponseError,
    TallyAuthError,
    TallyConnectionError,
    TallyHTTPError,
    TallyTimeoutError,
)
from .models import Company

DEFAULT_HEADERS = {
    "Content-Type": "application/xml",
    "Accept": "application/xml, text/xml, */*",
    "User-Agent": "tally-order-sync/0.1",
}


def _mask(token: str) -> str:
    return f"{token[:4]}...{token[-4:]}" if len(token) > 12 else "***"


class TallyClient:
    """
    Async client for the Tally gateway.

    Features:
    - Company identity headers (x-tallyloc-id, x-company, x-guid) on every call
    - Per-call deadline enforced on both the coroutine and the socket
    - Retries with exponential backoff for read-only queries only
    """

    def __init__(
        self,
        config: Optional[TallyOrderConfig] = None,
        company: Optional[Company] = None,
        session: Optional[requests.Session] = None,
    ):
        self.config = config or TallyOrderConfig.from_env()
        self.company = company or self.config.selected_company()
        self.data_url = self.config.tally_data_url
        self.credit_url = self.config.credit_url
        self.session = session or requests.Session()
        self.session.headers.update(DEFAULT_HEADERS)
        self.session.headers.update({
            "x-tallyloc-id": str(self.company.tallyloc_id),
            "x-company": self.company.name,
            "x-guid": self.company.guid,
        })
        if self.config.auth_token:
            self.session.headers["Authorization"] = f"Bearer {self.config.auth_token}"
        self.retry_wait = wait_exponential(multiplier=1, min=1, max=10)

    def _post(
        self,
        url: str,
        timeout: float,
        data: Optional[bytes] = None,
        json: Optional[dict] = None,
        auth_token: Optional[str] = None,
    ) -> requests.Response:
        headers = {}
        if auth_token:
            headers["Authorization"] = f"Bearer {auth_token}"
        if json is not None:
            headers["Content-Type"] = "application/json"
            headers["Accept"] = "application/json"

        try:
            r = self.session.post(url, data=data, json=json, headers=headers, timeout=timeout)
        except requests.Timeout as e:
            logger.error(f"Tally request timed out after {timeout}s")
            raise TallyTimeoutError(timeout) from e
        except requests.ConnectionError as e:
            logger.error(f"Failed to connect to Tally gateway at {url}: {e}")
            raise TallyConnectionError(f"Cannot connect to Tally gateway: {e}") from e
        except requests.RequestException as e:
            logger.error(f"Tally request failed: {e}")
            raise TallyConnectionError(f"Request failed: {e}") from e

        if r.status_code == 403:
            token = auth_token or self.config.auth_token
            logger.error(
                f"Access denied by gateway for company '{self.company.name}' (token {_mask(token or '')})"
            )
            raise TallyAuthError(r.text)
        if not 200 <= r.status_code < 300:
            logger.error(f"Tally gateway returned HTTP {r.status_code}")
            raise TallyHTTPError(r.status_code, r.text)
        return r

    async def _call(self, timeout: float, **kwargs) -> requests.Response:
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(self._post, timeout=timeout, **kwargs), timeout
            )
        except asyncio.TimeoutError as e:
            logger.error(f"Tally request exceeded its {timeout}s deadline")
            raise TallyTimeoutError(timeout) from e

    async def post_xml(self, xml: str, timeout: Optional[float] = None, auth_token: Optional[str] = None) -> str:
        """
        Post one XML envelope and return the response body.

        Sent exactly once. Used for voucher imports, which must never be
        replayed automatically.

        Raises:
            TallyTimeoutError: deadline expired
            TallyAuthError: HTTP 403
            TallyHTTPError: any other non-2xx status
            TallyConnectionError: network failure
        """
        timeout = timeout or self.config.submit_timeout
        logger.debug(f"POST {self.data_url} ({len(xml)} bytes): {xml[:300]}")
        r = await self._call(timeout, url=self.data_url, data=xml.encode("utf-8"), auth_token=auth_token)
        logger.debug(f"Response ({len(r.text)} bytes): {r.text[:300]}")
        return r.text

    async def fetch_xml(self, xml: str, timeout: Optional[float] = None) -> str:
        """
        Post a read-only query, retrying on connection errors.

        Only for requests that change nothing in Tally (exports, reports).
        """
        timeout = timeout or self.config.query_timeout
        async for attempt in AsyncRetrying(
            wait=self.retry_wait,
            stop=stop_after_attempt(max(1, self.config.retry_attempts)),
            retry=retry_if_exception_type(TallyConnectionError),
            before_sleep=lambda retry_state: logger.warning(
                f"Retrying Tally query (attempt {retry_state.attempt_number})..."
            ),
            reraise=True,
        ):
            with attempt:
                return await self.post_xml(xml, timeout=timeout)

    async def post_json(self, url: str, payload: dict, timeout: Optional[float] = None) -> Any:
        """POST a JSON body and decode the JSON reply."""
        timeout = timeout or self.config.query_timeout
        r = await self._call(timeout, url=url, json=payload)
        try:
            return r.json()
        except ValueError as e:
            raise MalformedResponseError(f"Invalid JSON from {url}: {e}") from e

    async def test_connection(self) -> dict:
        """
        Test connection to the gateway and return a status summary.

        Returns:
            Dict with connection status and server info
        """
        xml = build_list_groups_request(self.company.name)
        try:
            response = await self.fetch_xml(xml, timeout=30)
        except (TallyConnectionError, TallyTimeoutError, TallyHTTPError) as e:
            return {
                "status": "failed",
                "url": self.data_url,
                "company": self.company.name,
                "error": str(e),
            }

        if "<ENVELOPE" in response:
            return {
                "status": "connected",
                "url": self.data_url,
                "company": self.company.name,
                "response_length": len(response),
                "groups_found": response.count("<GROUP "),
            }
        return {
            "status": "connected_unknown",
            "url": self.data_url,
            "company": self.company.name,
            "message": "Connected but unexpected response format",
        }

    def close(self):
        """Close the session."""
        self.session.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
