"""REST client for the message history that sits next to the typing channel."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, List, Optional

import aiohttp

API_PREFIX = "/api/v1"


class HistoryError(Exception):
    def __init__(self, status: int, code: str, message: str) -> None:
        self.status = status
        self.code = code
        self.message = message
        super().__init__(f"{status} {code}: {message}")


@dataclass(frozen=True)
class Message:
    id: str
    client_id: str
    sender_id: str
    content: str
    is_internal: bool = False
    is_read: bool = False
    parent_id: Optional[str] = None
    read_at: Optional[str] = None
    created_at: Optional[str] = None
    sender_name: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "Message":
        return cls(
            id=str(payload["id"]),
            client_id=str(payload["client_id"]),
            sender_id=str(payload["sender_id"]),
            content=str(payload.get("content") or ""),
            is_internal=bool(payload.get("is_internal", False)),
            is_read=bool(payload.get("is_read", False)),
            parent_id=payload.get("parent_id"),
            read_at=payload.get("read_at"),
            created_at=payload.get("created_at"),
            sender_name=payload.get("sender_name"),
        )


@dataclass(frozen=True)
class MessagePage:
    """One page of history, newest first as the server returns it."""

    messages: List[Message]
    page: int
    per_page: int
    total: int
    total_pages: int

    @property
    def has_more(self) -> bool:
        return self.page < self.total_pages

    def chronological(self) -> List[Message]:
        return list(reversed(self.messages))

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "MessagePage":
        meta = payload.get("meta") or {}
        messages = [Message.from_payload(item) for item in payload.get("data") or []]
        return cls(
            messages=messages,
            page=int(meta.get("page", 1)),
            per_page=int(meta.get("per_page", len(messages))),
            total=int(meta.get("total", len(messages))),
            total_pages=int(meta.get("total_pages", 1)),
        )


async def _raise_for_error(response: aiohttp.ClientResponse) -> None:
    if response.status < 400:
        return
    code = "http_error"
    message = response.reason or ""
    try:
        body = await response.json(content_type=None)
    except ValueError:
        body = None
    if isinstance(body, dict) and isinstance(body.get("error"), dict):
        code = str(body["error"].get("code") or code)
        message = str(body["error"].get("message") or message)
    raise HistoryError(response.status, code, message)


class MessageHistoryClient:
    def __init__(self, base_url: str, token: str, *, session: aiohttp.ClientSession | None = None) -> None:
        self.base_url = base_url.rstrip("/")
        self._token = token
        self._session = session
        self._owns_session = session is None

    def _url(self, path: str) -> str:
        return f"{self.base_url}{API_PREFIX}{path}"

    def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self._token}"}

    def _client(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession()
        return self._session

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        async with self._client().request(method, self._url(path), headers=self._headers(), **kwargs) as response:
            await _raise_for_error(response)
            if response.status == 204:
                return None
            raw = await response.text()
        if not raw:
            return None
        return json.loads(raw)

    async def list_messages(
        self,
        client_id: str,
        *,
        page: int = 1,
        per_page: int = 100,
        search: str | None = None,
    ) -> MessagePage:
        params: Dict[str, Any] = {"page": page, "per_page": per_page}
        if search:
            params["search"] = search
        payload = await self._request("GET", f"/messages/client/{client_id}", params=params)
        return MessagePage.from_payload(payload or {})

    async def iter_history(self, client_id: str, *, per_page: int = 100) -> AsyncIterator[Message]:
        """Yield every message of a conversation, newest first, across pages."""

        page = 1
        while True:
            result = await self.list_messages(client_id, page=page, per_page=per_page)
            for message in result.messages:
                yield message
            if not result.has_more or not result.messages:
                return
            page += 1

    async def create_message(
        self,
        client_id: str,
        content: str,
        *,
        is_internal: bool = False,
        parent_id: str | None = None,
        attachment_ids: List[str] | None = None,
    ) -> Message:
        body: Dict[str, Any] = {"client_id": client_id, "content": content, "is_internal": is_internal}
        if parent_id is not None:
            body["parent_id"] = parent_id
        if attachment_ids:
            body["attachment_ids"] = list(attachment_ids)
        payload = await self._request("POST", "/messages", json=body)
        return Message.from_payload(payload)

    async def mark_conversation_read(self, client_id: str) -> None:
        await self._request("PUT", f"/messages/client/{client_id}/read-all")

    async def unread_counts(self) -> Dict[str, int]:
        payload = await self._request("GET", "/messages/unread-counts")
        return {str(key): int(value) for key, value in (payload or {}).items()}

    async def delete_message(self, message_id: str) -> None:
        await self._request("DELETE", f"/messages/{message_id}")

    async def close(self) -> None:
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None
