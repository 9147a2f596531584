"""
Kitchen Ops Bot - Application
=============================

Validates the environment, wires every component around one document store
and runs the scheduler, the heartbeat server and the Telegram polling loop.
"""

import logging
import os
import sys
import threading
from datetime import datetime

from .bot import KitchenOpsBot
from .config import (
    ADMIN_PASSWORD,
    DB_FILE,
    HEARTBEAT_HOST,
    HEARTBEAT_PORT,
    HEARTBEAT_SECRET,
    SYSTEM_VERSION,
    TELEGRAM_BOT_TOKEN,
    setup_logging,
)
from .confirmations import ConfirmationTracker
from .heartbeat import HeartbeatMonitor, create_app
from .inventory import InventoryMonitor
from .notify import Notifier
from .reminders import ReminderEngine
from .scheduler import SchedulerTick
from .schedules import ScheduleService
from .sessions import SessionManager
from .staff import StaffService
from .store import DocumentStore
from .telegram_api import TelegramClient


class KitchenOpsSystem:
    """Main application: owns the components and their lifecycle."""

    def __init__(self, token: str = TELEGRAM_BOT_TOKEN, db_file: str = DB_FILE):
        self.logger = logging.getLogger("system")
        self.logger.critical(f"Kitchen Ops Bot v{SYSTEM_VERSION} initializing")

        if not self._validate_environment(token):
            sys.exit(1)

        self.store = DocumentStore(db_file)
        self.store.load()

        self.client = TelegramClient(token)
        self.notifier = Notifier(self.client)
        self.sessions = SessionManager(self.store)
        self.confirmations = ConfirmationTracker(self.store, self.notifier)
        self.inventory = InventoryMonitor(self.store, self.notifier)
        self.reminders = ReminderEngine(self.store, self.notifier)
        self.staff = StaffService(self.store, self.notifier)
        self.schedules = ScheduleService(self.store, self.notifier)
        self.heartbeat = HeartbeatMonitor(self.store, self.notifier)

        self.tick = SchedulerTick(
            self.store, self.schedules, self.confirmations, self.reminders, self.staff,
            self.inventory, self.heartbeat, sessions=self.sessions,
        )
        self.bot = KitchenOpsBot(
            self.client, self.store, self.notifier, self.sessions, self.confirmations,
            self.inventory, self.reminders, self.staff, self.schedules,
            admin_password=ADMIN_PASSWORD,
        )
        self.bot.tick = self.tick
        self.http_app = create_app(self.heartbeat, HEARTBEAT_SECRET)

        self.running = False
        self.startup_time = datetime.now()
        self.logger.info("System initialization completed")

    def _validate_environment(self, token: str) -> bool:
        if not token:
            self.logger.critical("Missing required environment variable: TELEGRAM_BOT_TOKEN")
            return False
        if not ADMIN_PASSWORD:
            self.logger.warning("ADMIN_PASSWORD not set - /login disabled")
        if not HEARTBEAT_SECRET:
            self.logger.warning("HEARTBEAT_SECRET not set - heartbeat endpoint rejects every request")
        self.logger.info("Environment validation passed")
        return True

    def _start_http(self):
        thread = threading.Thread(
            target=lambda: self.http_app.run(host=HEARTBEAT_HOST, port=HEARTBEAT_PORT, use_reloader=False),
            name="heartbeat-http",
            daemon=True,
        )
        thread.start()
        self.logger.info(f"Heartbeat endpoint listening on {HEARTBEAT_HOST}:{HEARTBEAT_PORT}")

    def start(self):
        """Start all components; blocks in the polling loop."""
        try:
            self.logger.critical("Starting Kitchen Ops Bot")
            self._start_http()
            self.tick.start()
            self.running = True
            self.logger.critical("System startup completed successfully")
            self.bot.start_polling()
        except KeyboardInterrupt:
            self.logger.info("Shutdown requested by user")
        finally:
            self.stop()

    def stop(self):
        if not self.running:
            return
        self.logger.critical("Shutting down Kitchen Ops Bot")
        self.running = False
        self.bot.stop()
        self.tick.stop()
        self.store.save()
        uptime = datetime.now() - self.startup_time
        self.logger.info(f"System ran for {uptime.total_seconds():.1f} seconds")
        self.logger.critical("System shutdown completed")


def main():
    setup_logging()
    logger = logging.getLogger("system")
    try:
        if len(sys.argv) > 1 and sys.argv[1] == "--test":
            print("🧪 TEST MODE: Running system validation...")
            KitchenOpsSystem()
            print(f"✅ Document {os.path.abspath(DB_FILE)} loaded")
            print("\nTo run the full system, use: kitchen-ops")
            return

        system = KitchenOpsSystem()
        print("🚀 Kitchen Ops Bot is running! Press Ctrl+C to stop")
        system.start()
    except Exception as e:
        logger.critical(f"Fatal error in main: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
