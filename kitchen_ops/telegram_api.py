"""
Thin Telegram Bot API client over ``requests``.

Covers the three calls the bot needs (sendMessage, answerCallbackQuery,
getUpdates) with bounded retry, HTML sanitization with a plain-text fallback
and the optional test-chat redirect.
"""

import html
import logging
import re
import time
from typing import Dict, List, Optional

import requests

from .config import TEST_CHAT, USE_TEST_CHAT

SAFE_TAGS = ("b", "/b", "i", "/i", "u", "/u", "s", "/s",
             "code", "/code", "pre", "/pre", "tg-spoiler", "/tg-spoiler")
MAX_MESSAGE_LENGTH = 4000


def sanitize_html(text: str) -> str:
    """
    Make dynamic text safe for Telegram HTML.

    Escapes everything, then re-enables the small whitelist of tags the
    message templates use and strips empty tags like "<>".
    """
    text = html.escape(text, quote=False)
    for tag in SAFE_TAGS:
        text = text.replace(f"&lt;{tag}&gt;", f"<{tag}>")
    text = re.sub(r"<\s*>", "", text)
    text = re.sub(r"</\s*>", "", text)
    return text


class TelegramClient:
    """Production Telegram client with error handling and retry."""

    def __init__(self, token: str, max_retries: int = 3, retry_delay: float = 1.0,
                 use_test_chat: bool = USE_TEST_CHAT, test_chat: int = TEST_CHAT):
        self.token = token
        self.base_url = f"https://api.telegram.org/bot{token}"
        self.logger = logging.getLogger("telegram")
        self.session = requests.Session()
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.last_update_id = 0

        self.use_test_chat = use_test_chat and bool(test_chat)
        self.test_chat = test_chat if self.use_test_chat else None
        if self.use_test_chat:
            self.logger.info(f"Test mode enabled - all messages will go to chat {self.test_chat}")

    # ===== NETWORK COMMUNICATION WITH RETRY LOGIC =====

    def _make_request(self, method: str, data: Dict = None, timeout: int = 30) -> Optional[Dict]:
        """Make a Bot API request; returns the parsed payload or None."""
        url = f"{self.base_url}/{method}"
        try:
            start = time.time()
            resp = self.session.post(url, json=data or {}, timeout=timeout)
            duration = (time.time() - start) * 1000

            if resp.status_code == 200:
                payload = resp.json()
                if payload.get("ok"):
                    self.logger.debug(f"Telegram {method} OK in {duration:.2f}ms")
                    return payload
                self.logger.error(
                    f"Telegram {method} error {payload.get('error_code', 'unknown')}: "
                    f"{payload.get('description', 'no description')}"
                )
                return None

            self.logger.error(f"Telegram {method} HTTP {resp.status_code}: {resp.text[:200]}")
            return None

        except requests.exceptions.Timeout:
            self.logger.error(f"Telegram {method} timeout")
            return None
        except requests.exceptions.ConnectionError:
            self.logger.error(f"Telegram {method} connection error")
            return None
        except (requests.exceptions.RequestException, ValueError) as e:
            self.logger.error(f"Telegram {method} unexpected error: {e}")
            return None

    def _make_request_with_retry(self, method: str, data: Dict = None) -> Optional[Dict]:
        """
        Make API request with automatic retry on failure.

        Args:
            method: Telegram API method
            data: Request payload

        Returns:
            Optional[Dict]: Response or None if all retries failed
        """
        for attempt in range(self.max_retries):
            result = self._make_request(method, data)
            if result is not None:
                return result

            if attempt < self.max_retries - 1:
                self.logger.warning(f"Request {method} failed, attempt {attempt + 1}/{self.max_retries}")
                time.sleep(self.retry_delay * (attempt + 1))

        self.logger.error(f"Request {method} failed after {self.max_retries} attempts")
        return None

    # ===== PUBLIC API =====

    def send_message(self, chat_id, text: str, reply_markup: Optional[Dict] = None,
                     parse_mode: Optional[str] = "HTML") -> bool:
        """Send a message, falling back to plain text if HTML is rejected."""
        if self.use_test_chat:
            original_chat_id = chat_id
            chat_id = self.test_chat
            text = f"<b>[Test Mode - Original Chat: {original_chat_id}]</b>\n\n{text}"

        if len(text) > MAX_MESSAGE_LENGTH:
            text = text[:MAX_MESSAGE_LENGTH - 3] + "..."

        payload = {
            "chat_id": chat_id,
            "text": sanitize_html(text) if parse_mode == "HTML" else text,
            "disable_web_page_preview": True,
        }
        if parse_mode:
            payload["parse_mode"] = parse_mode
        if reply_markup:
            payload["reply_markup"] = reply_markup

        if self._make_request_with_retry("sendMessage", payload):
            self.logger.info(f"Message sent to chat {chat_id}")
            return True

        if parse_mode == "HTML":
            payload.pop("parse_mode", None)
            payload["text"] = re.sub(r"</?[a-z-]+>", "", text)
            if self._make_request_with_retry("sendMessage", payload):
                self.logger.info(f"Message sent as plain text to chat {chat_id}")
                return True

        self.logger.error(f"Failed to send message to chat {chat_id}")
        return False

    def answer_callback_query(self, callback_query_id: str, text: Optional[str] = None) -> bool:
        data = {"callback_query_id": callback_query_id}
        if text:
            data["text"] = text
        return self._make_request("answerCallbackQuery", data) is not None

    def get_updates(self, timeout: int = 25) -> List[Dict]:
        """Long-poll for updates and advance the offset."""
        data = {
            "timeout": timeout,
            "allowed_updates": ["message", "callback_query"],
        }
        if self.last_update_id:
            data["offset"] = self.last_update_id + 1

        result = self._make_request("getUpdates", data, timeout=timeout + 10)
        if not result:
            return []

        updates = result.get("result", [])
        if updates:
            self.last_update_id = updates[-1]["update_id"]
        return updates
