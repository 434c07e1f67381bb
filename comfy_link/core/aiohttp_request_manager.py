"""
One-shot HTTP calls to the ComfyUI server on a shared aiohttp session.
"""

import asyncio
import json
import ssl
from typing import Any

import aiohttp
import certifi

from ..errors import NetworkError

Payload = dict | list | bytes


class AiohttpRequestManager:
    """
    Owns a lazily created aiohttp session. Transport failures and HTTP
    error statuses surface as NetworkError; status is None for the former.
    """

    def __init__(self, timeout: float | None = 30.0):
        self._session: aiohttp.ClientSession | None = None
        self._timeout = timeout

    async def ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            ssl_context = ssl.create_default_context(cafile=certifi.where())
            self._session = aiohttp.ClientSession(
                connector=aiohttp.TCPConnector(ssl=ssl_context)
            )
        return self._session

    async def get(self, url: str, params: dict | None = None, timeout: float | None = None) -> Payload:
        """GET; JSON responses are decoded, anything else returned as bytes."""
        return await self._request("GET", url, timeout, params=params)

    async def post(self, url: str, data: dict | None = None, timeout: float | None = None) -> Payload:
        """POST a JSON body (or nothing when data is None)."""
        return await self._request("POST", url, timeout, json=data)

    async def upload(
        self,
        url: str,
        field_name: str,
        filename: str,
        data: bytes,
        fields: dict | None = None,
        content_type: str = "image/png",
    ) -> Payload:
        """
        Multipart upload of one file.

        Args:
            url: Request URL
            field_name: Form field holding the file
            filename: File name reported to the server
            data: File contents
            fields: Additional plain form fields
        """
        form = aiohttp.FormData()
        form.add_field(field_name, data, filename=filename, content_type=content_type)
        for key, value in (fields or {}).items():
            form.add_field(key, str(value))
        return await self._request("POST", url, None, data=form)

    async def download(self, url: str, params: dict | None = None, timeout: float | None = None) -> bytes:
        """GET raw bytes regardless of content type."""
        return await self._request("GET", url, timeout, raw=True, params=params)

    async def close(self):
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    async def _request(
        self, method: str, url: str, timeout: float | None, raw: bool = False, **kwargs: Any
    ) -> Payload:
        session = await self.ensure_session()
        total = timeout if timeout is not None else self._timeout
        client_timeout = aiohttp.ClientTimeout(total=total) if total else None
        try:
            async with session.request(method, url, timeout=client_timeout, **kwargs) as response:
                if response.status >= 400:
                    raise await self._error(response, url)
                if raw:
                    return await response.read()
                if "application/json" in response.headers.get("Content-Type", ""):
                    return await response.json()
                return await response.read()
        except aiohttp.ClientError as e:
            raise NetworkError(0, str(e), url) from e
        except asyncio.TimeoutError as e:
            raise NetworkError(0, f"Request timed out after {total}s", url) from e

    @staticmethod
    async def _error(response: aiohttp.ClientResponse, url: str) -> NetworkError:
        """Build the error for a failed response, keeping a JSON body if there is one."""
        try:
            data = await response.json(content_type=None)
        except (json.JSONDecodeError, aiohttp.ContentTypeError, UnicodeDecodeError):
            data = None
        if isinstance(data, dict):
            error = data.get("error") or "Network error"
            if isinstance(error, dict):
                error = error.get("message") or error.get("type") or "Network error"
            message = f"{error} ({response.reason})"
        else:
            data = None
            message = f"{(await response.text()).strip() or 'Network error'} ({response.reason})"
        return NetworkError(response.status, message, url, status=response.status, data=data)
