import logging
from typing import Iterable

from models.contact import Contact
from services.notification.senders import BaseSender

logger = logging.getLogger(__name__)


class NotificationManager:
    """
    Fans a composed message out to contacts.

    The caller decides who is notifiable; the manager invokes ``send`` once
    per contact and never lets a transport failure reach the caller.
    """

    def __init__(self, sender: BaseSender) -> None:
        self._sender = sender

    @property
    def sender(self) -> BaseSender:
        return self._sender

    def broadcast(self, contacts: Iterable[Contact], message: str) -> int:
        """Returns the number of contacts the message was handed over for."""
        handed_over = 0
        for contact in contacts:
            try:
                self._sender.send(contact, message)
                handed_over += 1
            except Exception:
                logger.exception("Failed to hand message to sender for %s", contact.id)
        return handed_over
