import logging
from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Deque, Optional, Tuple

from common.constants import OUTBOX_LIMIT
from libs.config import config
from libs.twilio_client import TwilioClient, get_twilio_client
from models.contact import Contact

logger = logging.getLogger(__name__)


class BaseSender:
    """Base class for message senders"""

    def send(self, contact: Contact, message: str) -> None:
        """
        Hand a fully composed message to the transport.

        Delivery is fire-and-forget: implementations must return without
        waiting for a transport acknowledgement.
        """
        raise NotImplementedError("Sender must implement send()")


class LoggingSender(BaseSender):
    """Dummy sender until a real provider is configured; keeps the latest messages."""

    def __init__(self, limit: int = OUTBOX_LIMIT) -> None:
        self.outbox: Deque[Tuple[str, str]] = deque(maxlen=limit)

    def send(self, contact: Contact, message: str) -> None:
        self.outbox.append((contact.phone, message))
        logger.info("Sending to %s (%s): %d chars", contact.name, contact.phone, len(message))


class SmsSender(BaseSender):
    """SMS sender; Twilio calls run on a worker pool."""

    def __init__(
        self,
        client: Optional[TwilioClient] = None,
        executor: Optional[ThreadPoolExecutor] = None,
    ) -> None:
        self._client = client
        self._executor = executor or ThreadPoolExecutor(
            max_workers=config.TWILIO_SEND_WORKERS, thread_name_prefix="sms-sender"
        )

    def send(self, contact: Contact, message: str) -> None:
        client = self._client or get_twilio_client()
        future = self._executor.submit(client.send_sms, contact.phone, message)
        future.add_done_callback(lambda f: self._log_result(contact, f))

    @staticmethod
    def _log_result(contact: Contact, future: Future) -> None:
        exc = future.exception()
        if exc is not None:
            logger.error("SMS to %s failed: %s", contact.phone, exc)
            return
        result = future.result()
        if result.get("status") != "sent":
            logger.error("SMS to %s failed: %s", contact.phone, result.get("error"))
        else:
            logger.info("SMS to %s sent (sid=%s)", contact.phone, result.get("sid"))


class SenderFactory:
    def __init__(self) -> None:
        self._senders = {
            "log": LoggingSender,
            "sms": SmsSender,
        }

    def get_sender(self, kind: str) -> BaseSender:
        if kind not in self._senders:
            raise ValueError(f"Unsupported sender: {kind}")
        if kind == "sms" and not config.validate_twilio_config():
            raise ValueError(
                "Twilio is not configured; set TWILIO_ACCOUNT_SID, "
                "TWILIO_AUTH_TOKEN and TWILIO_PHONE_NUMBER"
            )
        return self._senders[kind]()
