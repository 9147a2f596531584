"""
Kitchen Ops Bot - Configuration and Logging
===========================================

Environment loading, system constants, document setting defaults and the
logging setup shared by every component.

Environment is read from a ``.env`` file (if present) and then the process
environment. Nothing here talks to the network or the document store.
"""

import copy
import logging
import logging.handlers
import os
import sys
from datetime import datetime, time, timezone
from typing import Any, Dict, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv

load_dotenv()

# ===== CONFIGURATION AND CONSTANTS =====

SYSTEM_VERSION = "1.0.0"
LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)-12s | %(funcName)-20s | %(lineno)d | %(message)s"

# Scheduler tick is fixed; settings.inventory.checkIntervalMinutes does not change it
TICK_INTERVAL_SECONDS = 30
REMINDER_LOOKAHEAD_SECONDS = 60
SESSION_TIMEOUT_MINUTES = 30
AUDIT_RETENTION_ENTRIES = 1000
RATE_LIMIT_COMMANDS_PER_MINUTE = 10

TELEGRAM_BOT_TOKEN = os.environ.get("TELEGRAM_BOT_TOKEN", "")
DB_FILE = os.environ.get("DB_FILE", "db.json")
BUSINESS_TIMEZONE = os.environ.get("BUSINESS_TIMEZONE", "Asia/Kolkata")
DEFAULT_PARTNER_TIMEZONE = "UTC"
ADMIN_PASSWORD = os.environ.get("ADMIN_PASSWORD", "")
HEARTBEAT_SECRET = os.environ.get("HEARTBEAT_SECRET", "")
HEARTBEAT_HOST = os.environ.get("HEARTBEAT_HOST", "0.0.0.0")
HEARTBEAT_PORT = int(os.environ.get("HEARTBEAT_PORT", "8080"))
LOG_DIR = os.environ.get("LOG_DIR", ".")

# Test chat override - every outgoing message is redirected here when enabled
USE_TEST_CHAT = os.environ.get("USE_TEST_CHAT", "false").lower() == "true"
TEST_CHAT = int(os.environ.get("TEST_CHAT", "0") or 0)

ROLES = ("owner", "admin", "staff")
PRIVILEGED_ROLES = ("owner", "admin")
SALARY_TYPES = ("daily", "monthly")
ATTENDANCE_STATUSES = ("present", "absent", "leave")

DEFAULT_SETTINGS: Dict[str, Any] = {
    "vegConfirm": {
        "confirmTime": "10:00",
        "followupMinutes1": 30,
        "followupMinutes2": 60,
    },
    "attendancePromptTime": "10:30",
    "endOfDayPaymentCheck": "21:00",
    "monthlyReminderDaysBefore": 3,
    "heartbeat": {
        "thresholdMinutes": 10,
    },
    "inventory": {
        "checkIntervalMinutes": 60,
        "warnDays": 4,
        "criticalDays": 2,
    },
}

# Error Messages for User Feedback
ERROR_MESSAGES = {
    "not_authorized": "⛔ Not authorized.",
    "invalid_quantity": "❌ Please enter a valid number (e.g., 5, 2.5 or 0)",
    "invalid_amount": "❌ Please enter an amount greater than 0",
    "invalid_date": "📅 Please enter a valid date/time (YYYY-MM-DD HH:MM, HH:MM or 'in 30m')",
    "invalid_time": "🕐 Please enter a time as HH:MM (24-hour)",
    "invalid_command": "❓ Unknown command. Type /help for available commands",
    "item_not_found": "❌ Item '{item}' not found",
    "staff_not_found": "❌ Staff member '{staff}' not found",
    "system_error": "🚨 System error - please try again or contact support",
    "session_expired": "⏰ That conversation timed out. Please start over with the command",
    "rate_limited": "⏳ Too many commands. Please wait a moment.",
}


def default_settings() -> Dict[str, Any]:
    """Return a fresh copy of the default settings tree."""
    return copy.deepcopy(DEFAULT_SETTINGS)


# ===== TIME HELPERS =====

def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def get_zone(timezone_str: Optional[str]) -> ZoneInfo:
    """
    Resolve a timezone name, falling back to UTC for unknown names.

    Args:
        timezone_str: IANA timezone name (e.g. 'Asia/Kolkata') or None

    Returns:
        ZoneInfo: Resolved zone
    """
    if not timezone_str:
        return ZoneInfo(DEFAULT_PARTNER_TIMEZONE)
    try:
        return ZoneInfo(timezone_str)
    except (ZoneInfoNotFoundError, ValueError):
        logging.getLogger("system").warning(f"Unknown timezone '{timezone_str}', using UTC")
        return ZoneInfo(DEFAULT_PARTNER_TIMEZONE)


def is_valid_timezone(timezone_str: str) -> bool:
    try:
        ZoneInfo(timezone_str)
        return True
    except (ZoneInfoNotFoundError, ValueError):
        return False


def to_zone(moment: datetime, timezone_str: Optional[str]) -> datetime:
    """Convert an aware datetime into the given timezone."""
    return moment.astimezone(get_zone(timezone_str))


def business_now(now: datetime) -> datetime:
    return to_zone(now, BUSINESS_TIMEZONE)


def business_date(now: datetime) -> str:
    """Business date (YYYY-MM-DD) in the business timezone."""
    return business_now(now).strftime("%Y-%m-%d")


def parse_hhmm(value: str) -> time:
    """
    Parse an HH:MM string.

    Raises:
        ValueError: When the value is not a valid 24-hour time
    """
    hh, mm = (value or "").strip().split(":")
    return time(int(hh), int(mm))


def reached_time_of_day(local_now: datetime, hhmm: str) -> bool:
    """True once the local clock is at or past HH:MM for the day."""
    target = parse_hhmm(hhmm)
    return (local_now.hour, local_now.minute) >= (target.hour, target.minute)


def parse_iso(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO timestamp from the document; naive values are taken as UTC."""
    if not value:
        return None
    moment = datetime.fromisoformat(value)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment


def to_iso(moment: Optional[datetime]) -> Optional[str]:
    return moment.isoformat() if moment is not None else None


# ===== LOGGING SETUP =====

def setup_logging() -> logging.Logger:
    """
    Configure the logging system with local-time timestamps.

    Log Levels:
    - CRITICAL: System startup/shutdown, store initialization
    - INFO: Business operations, commands, alerts, sends
    - DEBUG: Tick details, flow transitions, request timings

    Returns:
        logging.Logger: The 'system' logger
    """

    class LocalTimeFormatter(logging.Formatter):
        def formatTime(self, record, datefmt=None):
            dt = datetime.fromtimestamp(record.created)
            if datefmt:
                return dt.strftime(datefmt)
            return dt.strftime("%Y-%m-%d %H:%M:%S,%f")[:-3]

    formatter = LocalTimeFormatter(LOG_FORMAT)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)

    os.makedirs(LOG_DIR, exist_ok=True)
    file_handler = logging.handlers.TimedRotatingFileHandler(
        os.path.join(LOG_DIR, "kitchen_ops.log"),
        when="midnight",
        backupCount=30,
        encoding="utf-8",
    )
    file_handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    root_logger.addHandler(console_handler)
    root_logger.addHandler(file_handler)

    # urllib3 and werkzeug are chatty at DEBUG
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("werkzeug").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)

    loggers = {
        "system": logging.getLogger("system"),
        "store": logging.getLogger("store"),
        "telegram": logging.getLogger("telegram"),
        "scheduler": logging.getLogger("scheduler"),
        "business": logging.getLogger("business"),
        "http": logging.getLogger("http"),
    }

    if os.environ.get("RAILWAY_ENVIRONMENT") == "production":
        loggers["scheduler"].setLevel(logging.INFO)
        loggers["store"].setLevel(logging.INFO)

    logger = loggers["system"]
    logger.critical(f"Kitchen Ops Bot v{SYSTEM_VERSION} - Logging initialized")
    logger.info(f"Log format: {LOG_FORMAT}")
    logger.info(f"Business timezone: {BUSINESS_TIMEZONE}")
    return logger
