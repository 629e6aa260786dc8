import logging
from typing import Protocol

import httpx

from .config import HTTP_TIMEOUT

logger = logging.getLogger(__name__)


class CustomerDirectory(Protocol):
    async def contact_for(self, customer_id: str) -> str | None:
        ...


class VerificationMessenger(Protocol):
    async def send_verification_code(self, contact: str, code: str, context: dict) -> bool:
        ...


class ChatSessions(Protocol):
    async def end_session_for(self, booking_id: str) -> None:
        ...


class _HttpCollaborator:
    def __init__(self, base_url: str, timeout: float = HTTP_TIMEOUT, transport: httpx.AsyncBaseTransport | None = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout, transport=self._transport)


class HttpCustomerDirectory(_HttpCollaborator):
    """Looks up the customer's email on the user service."""

    async def contact_for(self, customer_id: str) -> str | None:
        try:
            async with self._client() as client:
                r = await client.get(f"/users/{customer_id}")
                if r.status_code != 200:
                    return None
                return (r.json() or {}).get("email") or None
        except httpx.HTTPError as e:
            logger.warning("customer lookup failed for %s: %s", customer_id, e)
            return None


class HttpVerificationMessenger(_HttpCollaborator):
    async def send_verification_code(self, contact: str, code: str, context: dict) -> bool:
        body = {"to": contact, "code": code, "context": context}
        try:
            async with self._client() as client:
                r = await client.post("/verification-codes", json=body)
                r.raise_for_status()
                return True
        except httpx.HTTPError as e:
            logger.warning("verification code delivery to %s failed: %s", contact, e)
            return False


class HttpChatSessions(_HttpCollaborator):
    """
    Ends and purges the chat session tied to a booking.
    A missing session counts as already ended, so repeated calls are safe.
    """

    async def end_session_for(self, booking_id: str) -> None:
        async with self._client() as client:
            r = await client.delete(f"/chat/sessions/by-booking/{booking_id}")
            if r.status_code == 404:
                return
            r.raise_for_status()
