"""
Notification dispatcher.

Engines build ``OutgoingMessage`` objects while holding the store lock and
hand them over here once their state is persisted. A failing recipient is
logged and skipped so the rest of a broadcast still goes out.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple


def _ik(rows: List[List[Tuple[str, str]]]) -> Dict:
    """Create inline keyboard markup for Telegram."""
    return {
        "inline_keyboard": [
            [{"text": text, "callback_data": data} for text, data in row]
            for row in rows
        ]
    }


@dataclass
class OutgoingMessage:
    recipients: List[str]
    text: str
    keyboard: Optional[Dict] = None
    tag: str = ""


@dataclass
class DispatchResult:
    sent: int = 0
    failed: List[str] = field(default_factory=list)


class Notifier:
    """Sends messages to one or many chats through the Telegram client."""

    def __init__(self, client):
        self.client = client
        self.logger = logging.getLogger("telegram")

    def send(self, chat_id, text: str, keyboard: Optional[Dict] = None) -> bool:
        try:
            ok = self.client.send_message(chat_id, text, reply_markup=keyboard)
        except Exception as e:
            self.logger.error(f"Send to {chat_id} raised: {e}", exc_info=True)
            return False
        if not ok:
            self.logger.warning(f"Send to {chat_id} failed")
        return bool(ok)

    def broadcast(self, recipients: Iterable, text: str, keyboard: Optional[Dict] = None) -> DispatchResult:
        result = DispatchResult()
        for chat_id in recipients:
            if self.send(chat_id, text, keyboard):
                result.sent += 1
            else:
                result.failed.append(str(chat_id))
        return result

    def dispatch(self, outbox: Iterable[OutgoingMessage]) -> int:
        """Deliver every queued message; returns the number of successful sends."""
        sent = 0
        for message in outbox:
            result = self.broadcast(message.recipients, message.text, message.keyboard)
            sent += result.sent
            if result.failed:
                self.logger.warning(
                    f"{message.tag or 'message'}: {len(result.failed)} recipient(s) failed: {', '.join(result.failed)}"
                )
        return sent
