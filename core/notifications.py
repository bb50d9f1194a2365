"""
TELECONSULT+ WhatsApp Notification Service

Outbound text messages through the WHAPI gateway. Used for the
video call completion reports sent to the operations phone.
"""

import asyncio
import logging
from typing import Optional, Callable
from dataclasses import dataclass

import aiohttp

from core.config import settings

logger = logging.getLogger(__name__)


@dataclass
class NotificationResult:
    """Outcome of a single send attempt."""
    success: bool
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {"success": self.success, "error": self.error}


class WhatsAppService:
    """
    WHAPI client for plain text WhatsApp messages.

    Features:
    - Recipient normalisation (leading "+" stripped)
    - Never raises: every failure comes back as a NotificationResult
    - Sent / failed counters for /stats
    """

    def __init__(
        self,
        token: Optional[str] = None,
        api_url: Optional[str] = None,
        session_factory: Callable[..., aiohttp.ClientSession] = aiohttp.ClientSession
    ):
        self.token = settings.WHAPI_TOKEN if token is None else token
        self.api_url = api_url or settings.WHAPI_URL
        self._session_factory = session_factory
        self._sent_count = 0
        self._failed_count = 0

        if not self.token:
            logger.warning("⚠️ WHAPI_TOKEN not configured - WhatsApp messages will not be sent")

    @staticmethod
    def normalize_recipient(phone: str) -> str:
        phone = phone.strip()
        return phone[1:] if phone.startswith("+") else phone

    @staticmethod
    def _extract_error(data) -> Optional[str]:
        # WHAPI returns either {"message": ...} or {"error": {"message": ...}}
        if not isinstance(data, dict):
            return None
        error = data.get("error")
        if isinstance(error, dict):
            return error.get("message")
        return data.get("message") or error

    def _fail(self, error: str) -> NotificationResult:
        self._failed_count += 1
        return NotificationResult(success=False, error=error)

    async def send_text(self, recipient: str, body: str) -> NotificationResult:
        """
        Send a text message.

        Args:
            recipient: Phone number, international format, "+" optional
            body: Message text

        Returns:
            NotificationResult with success flag and error message on failure
        """
        if not self.token:
            logger.error("❌ WHAPI_TOKEN is not configured")
            return self._fail("WhatsApp token not configured")

        to = self.normalize_recipient(recipient or "")
        if not to:
            logger.error("❌ WhatsApp recipient is empty")
            return self._fail("Recipient not configured")

        headers = {
            "accept": "application/json",
            "authorization": f"Bearer {self.token}",
            "content-type": "application/json",
        }
        message = {"typing_time": 0, "to": to, "body": body}

        logger.info(f"📱 Sending WhatsApp to: {to}")

        try:
            async with self._session_factory() as session:
                async with session.post(self.api_url, json=message, headers=headers) as response:
                    data = await response.json(content_type=None)

                    if 200 <= response.status < 300:
                        self._sent_count += 1
                        logger.info(f"✅ WhatsApp sent to {to}")
                        logger.debug(f"WHAPI response: {data}")
                        return NotificationResult(success=True)

                    error = self._extract_error(data) or f"WHAPI error: {response.status}"
                    logger.error(f"❌ WhatsApp send failed ({response.status}): {error}")
                    return self._fail(str(error))

        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            logger.error(f"❌ WhatsApp network error: {e}")
            return self._fail(f"Network error: {e}")

    def get_stats(self) -> dict:
        """Get notification statistics."""
        return {
            "configured": bool(self.token),
            "sent_count": self._sent_count,
            "failed_count": self._failed_count
        }


# Global WhatsApp service instance
whatsapp_service = WhatsAppService()
