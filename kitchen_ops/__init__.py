"""Telegram operations bot for a small restaurant kitchen."""

from .config import SYSTEM_VERSION

__version__ = SYSTEM_VERSION
