"""HTTP client for the upstream inventory backend."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

import httpx

from .config import Settings

logger = logging.getLogger(__name__)


class BackendError(RuntimeError):
    """Raised when the backend is unreachable or answers with a non-success status."""

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class BackendTimeout(BackendError):
    """Raised when a backend call exceeds its timeout."""


class ImageFetchError(RuntimeError):
    """Raised when a remote product image cannot be used."""


@dataclass
class FetchedImage:
    content: bytes
    content_type: str


class GrocyClient:
    """Thin async wrapper around httpx that injects backend credentials.

    Redirects are never followed: an upstream access proxy answers
    unauthenticated calls with a redirect to its login page.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        image_transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.settings = settings
        self._client = httpx.AsyncClient(
            base_url=settings.upstream_root,
            headers=self._credential_headers(settings),
            timeout=settings.backend_timeout_seconds,
            follow_redirects=False,
            transport=transport,
        )
        self._image_client = httpx.AsyncClient(
            timeout=settings.backend_timeout_seconds,
            follow_redirects=True,
            transport=image_transport,
        )

    @staticmethod
    def _credential_headers(settings: Settings) -> Dict[str, str]:
        headers = {
            "GROCY-API-KEY": settings.grocy_api_key or "",
            "CF-Access-Client-Id": settings.cf_access_client_id or "",
            "CF-Access-Client-Secret": settings.cf_access_client_secret or "",
        }
        return {k: v for k, v in headers.items() if v}

    async def aclose(self) -> None:
        await self._client.aclose()
        await self._image_client.aclose()

    async def _send(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.TimeoutException as exc:
            logger.error("Backend timeout method=%s path=%s", method, path)
            raise BackendTimeout(f"{method} {path} timed out") from exc
        except httpx.HTTPError as exc:
            logger.error("Backend transport error method=%s path=%s error=%s", method, path, exc)
            raise BackendError(f"{method} {path} failed: {exc}") from exc
        return response

    async def _checked(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        response = await self._send(method, path, **kwargs)
        if not response.is_success:
            logger.warning(
                "Backend returned %s for %s %s", response.status_code, method, path
            )
            raise BackendError(
                f"{method} {path} returned {response.status_code}",
                status_code=response.status_code,
            )
        return response

    async def get_raw(self, path: str, params: Optional[Mapping[str, Any]] = None) -> bytes:
        response = await self._checked("GET", path, params=params)
        return response.content

    async def get_json(self, path: str, params: Optional[Mapping[str, Any]] = None) -> Any:
        payload = await self.get_raw(path, params=params)
        try:
            return json.loads(payload)
        except ValueError as exc:
            raise BackendError(f"GET {path} returned invalid JSON") from exc

    async def post_json(self, path: str, payload: Dict[str, Any]) -> Any:
        response = await self._checked("POST", path, json=payload)
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return None

    async def upload_file(self, path: str, *, filename: str, content: bytes, content_type: str) -> None:
        # multipart sets its own Content-Type with the boundary
        await self._checked("POST", path, files={"file": (filename, content, content_type)})

    async def forward(
        self,
        method: str,
        path: str,
        *,
        query: str = "",
        body: Optional[bytes] = None,
        timeout: float,
    ) -> httpx.Response:
        """Send a request verbatim, returning whatever status the backend answers."""
        url = f"{path}?{query}" if query else path
        headers = {"Content-Type": "application/json"} if body else None
        return await self._send(method, url, content=body or None, headers=headers, timeout=timeout)

    async def fetch_image(self, url: str, *, max_bytes: int) -> FetchedImage:
        try:
            response = await self._image_client.get(url)
        except httpx.HTTPError as exc:
            raise ImageFetchError(f"image fetch failed ({exc.__class__.__name__})") from exc
        if not response.is_success:
            raise ImageFetchError(f"image fetch failed ({response.status_code})")

        declared = response.headers.get("content-length")
        if declared and declared.isdigit() and int(declared) > max_bytes:
            raise ImageFetchError("image too large")
        content_type = response.headers.get("content-type", "")
        if not content_type.startswith("image/"):
            raise ImageFetchError(f"invalid content-type ({content_type})")
        if len(response.content) > max_bytes:
            raise ImageFetchError("image too large")
        return FetchedImage(content=response.content, content_type=content_type.split(";")[0].strip())
