"""Remote record service contract and its REST implementation."""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from typing import Any, Protocol

import aiohttp
from pydantic import BaseModel, ConfigDict

from pydatalayer._constants import USER_AGENT
from pydatalayer._redact import redact_for_log
from pydatalayer.config import DataLayerConfig
from pydatalayer.exceptions import DataLayerValidationError, TransientRemoteError

_logger = logging.getLogger(__name__)


class RemoteErrorDetail(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str
    code: str = ""
    status: int | None = None


class RemoteResponse(BaseModel):
    """``{data, error}`` pair returned by every remote call."""

    model_config = ConfigDict(frozen=True)

    data: Any = None
    error: RemoteErrorDetail | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class RemoteService(Protocol):
    """Structural interface of the remote record service.

    Any backing store implementing these four coroutines can be plugged into
    :class:`~pydatalayer.client.DataLayerClient`; tests use in-memory fakes.
    """

    async def query(self, collection: str) -> RemoteResponse:
        ...

    async def query_one(self, collection: str, record_id: Any) -> RemoteResponse:
        ...

    async def insert(self, collection: str, record: Mapping[str, Any]) -> RemoteResponse:
        ...

    async def update(self, collection: str, record_id: Any, patch: Mapping[str, Any]) -> RemoteResponse:
        ...


def _validate_collection(collection: str) -> str:
    if not collection or "/" in collection or "?" in collection:
        raise DataLayerValidationError(f"Invalid collection name: {collection!r}")
    return collection


class RestRemoteService:
    """PostgREST-style HTTP implementation of :class:`RemoteService`.

    Network failures raise :class:`TransientRemoteError`; non-2xx replies are
    returned as a :class:`RemoteResponse` carrying the error so the
    orchestrator can retry them.
    """

    def __init__(self, config: DataLayerConfig, http_session: aiohttp.ClientSession) -> None:
        self._config = config
        self._http = http_session
        self._timeout = aiohttp.ClientTimeout(total=config.request_timeout)

    def _headers(self, *, single: bool = False, prefer_representation: bool = False) -> dict[str, str]:
        headers: dict[str, str] = {
            "accept": "application/vnd.pgrst.object+json" if single else "application/json",
            "content-type": "application/json; charset=UTF-8",
            "user-agent": USER_AGENT,
        }
        if self._config.api_key:
            headers["apikey"] = self._config.api_key
            headers["authorization"] = f"Bearer {self._config.api_key}"
        if prefer_representation:
            headers["prefer"] = "return=representation"
        return headers

    def _url(self, collection: str) -> str:
        return f"{self._config.base_url.rstrip('/')}/rest/v1/{_validate_collection(collection)}"

    async def _request(
        self,
        method: str,
        collection: str,
        *,
        params: Mapping[str, str] | None = None,
        body: Any = None,
        headers: dict[str, str],
    ) -> RemoteResponse:
        url = self._url(collection)
        data = None if body is None else json.dumps(body, separators=(",", ":"))

        _logger.debug("%s %s params=%s body=%s", method, url, params, redact_for_log(body))

        try:
            async with self._http.request(
                method,
                url,
                params=params,
                data=data,
                headers=headers,
                timeout=self._timeout,
            ) as resp:
                text = await resp.text()
                status = resp.status
        except (aiohttp.ClientError, TimeoutError) as exc:
            raise TransientRemoteError(
                f"{method} {collection} failed: {exc}",
                collection=collection,
            ) from exc

        payload: Any = None
        if text:
            try:
                payload = json.loads(text)
            except json.JSONDecodeError:
                payload = None
                if 200 <= status < 300:
                    raise TransientRemoteError(
                        f"Invalid JSON from {method} {collection}: {text[:200]}",
                        collection=collection,
                        status_code=status,
                    ) from None

        if not 200 <= status < 300:
            message = text[:200]
            code = ""
            if isinstance(payload, dict):
                message = str(payload.get("message") or message)
                code = str(payload.get("code") or "")
            return RemoteResponse(error=RemoteErrorDetail(message=f"HTTP {status}: {message}", code=code, status=status))

        return RemoteResponse(data=payload)

    async def query(self, collection: str) -> RemoteResponse:
        return await self._request(
            "GET",
            collection,
            params={"select": "*", "order": "id.desc"},
            headers=self._headers(),
        )

    async def query_one(self, collection: str, record_id: Any) -> RemoteResponse:
        return await self._request(
            "GET",
            collection,
            params={"select": "*", "id": f"eq.{record_id}"},
            headers=self._headers(single=True),
        )

    async def insert(self, collection: str, record: Mapping[str, Any]) -> RemoteResponse:
        return await self._request(
            "POST",
            collection,
            body=[dict(record)],
            headers=self._headers(prefer_representation=True),
        )

    async def update(self, collection: str, record_id: Any, patch: Mapping[str, Any]) -> RemoteResponse:
        return await self._request(
            "PATCH",
            collection,
            params={"id": f"eq.{record_id}"},
            body=dict(patch),
            headers=self._headers(prefer_representation=True),
        )
