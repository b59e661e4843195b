"""HTTP transport shared by the dispatch store and the prediction gateway."""
import asyncio
from typing import Any, Callable, Dict, Optional

import requests
from loguru import logger

from ..models.errors import NotFound, StaleStateConflict, Unavailable, ValidationError


class ApiClient:
    """Thin wrapper over a requests.Session.

    Blocking requests run in a worker thread so every call is a single
    await point for the caller. HTTP failures are translated into the
    dispatch error taxonomy; a 401 triggers one token refresh and retry.
    """

    def __init__(
        self,
        base_url: str,
        session: Optional[requests.Session] = None,
        timeout: float = 10.0,
        token_provider: Optional[Callable[[], Optional[str]]] = None,
        token_refresher: Optional[Callable[[], bool]] = None,
        name: str = "api",
    ):
        self.base_url = (base_url or "").rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout
        self.token_provider = token_provider
        self.token_refresher = token_refresher
        self.name = name
        logger.info(f"ApiClient[{name}] initialized with base URL: {self.base_url}")

    def _headers(self) -> Dict[str, str]:
        headers = {"accept": "application/json", "Content-Type": "application/json"}
        if self.token_provider:
            token = self.token_provider()
            if token:
                headers["Authorization"] = f"Bearer {token}"
        return headers

    def _send(self, method: str, path: str, params=None, payload=None) -> requests.Response:
        url = f"{self.base_url}{path}"
        try:
            return self.session.request(
                method, url, params=params, json=payload, headers=self._headers(), timeout=self.timeout
            )
        except requests.Timeout as e:
            logger.error(f"[{self.name}] {method} {url} timed out after {self.timeout}s")
            raise Unavailable(f"{self.name} request timed out: {e}")
        except requests.RequestException as e:
            logger.error(f"[{self.name}] {method} {url} failed: {e}")
            raise Unavailable(f"{self.name} request failed: {e}")

    def request(self, method: str, path: str, params=None, payload=None) -> Any:
        """Perform a blocking request and return the decoded JSON body."""
        response = self._send(method, path, params=params, payload=payload)

        if response.status_code == 401 and self.token_refresher:
            logger.warning(f"[{self.name}] Token appears invalid, attempting refresh...")
            if self.token_refresher():
                response = self._send(method, path, params=params, payload=payload)

        return self._decode(method, path, response)

    def _decode(self, method: str, path: str, response: requests.Response) -> Any:
        status = response.status_code
        if status in (200, 201):
            try:
                return response.json()
            except ValueError:
                raise Unavailable(f"{self.name} returned a non-JSON body for {method} {path}")
        if status == 204:
            return None

        detail = self._error_detail(response)
        if status == 404:
            raise NotFound("Resource", path)
        if status == 409:
            raise StaleStateConflict(
                detail.get("dispatchId"),
                detail.get("expectedState"),
                detail.get("actualState"),
                expected_ambulance_id=detail.get("expectedAmbulanceId"),
                actual_ambulance_id=detail.get("actualAmbulanceId"),
            )
        if status in (400, 422):
            raise ValidationError(detail.get("message") or response.text[:200])

        logger.error(f"[{self.name}] {method} {path} returned status {status}: {response.text[:200]}")
        raise Unavailable(f"{self.name} returned status {status}")

    @staticmethod
    def _error_detail(response: requests.Response) -> Dict[str, Any]:
        try:
            body = response.json()
        except ValueError:
            return {}
        return body if isinstance(body, dict) else {}

    async def get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        return await asyncio.to_thread(self.request, "GET", path, params, None)

    async def post(self, path: str, payload: Optional[Dict[str, Any]] = None) -> Any:
        return await asyncio.to_thread(self.request, "POST", path, None, payload)

    async def patch(self, path: str, payload: Optional[Dict[str, Any]] = None) -> Any:
        return await asyncio.to_thread(self.request, "PATCH", path, None, payload)
