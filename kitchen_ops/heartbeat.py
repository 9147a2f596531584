"""
Device heartbeats: recording, down/recovery alerts and the HTTP endpoint.

The down latch works like the inventory latches: one alert when a device
goes silent for longer than ``settings.heartbeat.thresholdMinutes`` and one
recovery notice when it reports again.
"""

import hmac
import logging
from datetime import datetime
from typing import List, NamedTuple

from flask import Flask, jsonify, request

from .config import parse_iso, to_iso, utc_now
from .models import Heartbeat
from .notify import OutgoingMessage


class DownState(NamedTuple):
    down: bool
    send_down: bool
    send_recovery: bool


def derive_down_state(minutes_silent: float, threshold_minutes: float, was_down: bool) -> DownState:
    down = minutes_silent > threshold_minutes
    return DownState(down=down, send_down=down and not was_down, send_recovery=was_down and not down)


class HeartbeatMonitor:

    def __init__(self, store, notifier):
        self.store = store
        self.notifier = notifier
        self.logger = logging.getLogger("business")

    def record(self, device_id: str, status: str, now: datetime) -> Heartbeat:
        with self.store.transaction():
            heartbeat = self.store.get_heartbeat(device_id) or Heartbeat(device_id=device_id)
            heartbeat.last_seen = to_iso(now)
            heartbeat.status = status or "ok"
            self.store.put_heartbeat(heartbeat)
        self.logger.debug(f"Heartbeat from {device_id}: {heartbeat.status}")
        return heartbeat

    def check(self, now: datetime) -> int:
        threshold = float(self.store.settings["heartbeat"]["thresholdMinutes"])
        outbox: List[OutgoingMessage] = []

        with self.store.transaction():
            recipients = [p.id for p in self.store.partners()]
            for heartbeat in self.store.heartbeats():
                last_seen = parse_iso(heartbeat.last_seen)
                if last_seen is None:
                    continue
                minutes = (now - last_seen).total_seconds() / 60
                state = derive_down_state(minutes, threshold, heartbeat.down)
                if state.send_down:
                    outbox.append(OutgoingMessage(
                        recipients,
                        f"🚨 <b>DEVICE DOWN</b>\n{heartbeat.device_id} has not reported for {int(minutes)} minutes\n"
                        f"Last status: {heartbeat.status}",
                        tag="heartbeat_down",
                    ))
                    self.logger.warning(f"Device {heartbeat.device_id} down ({int(minutes)} min silent)")
                elif state.send_recovery:
                    outbox.append(OutgoingMessage(
                        recipients,
                        f"✅ <b>DEVICE BACK</b>\n{heartbeat.device_id} is reporting again ({heartbeat.status})",
                        tag="heartbeat_recovered",
                    ))
                    self.logger.info(f"Device {heartbeat.device_id} recovered")
                if state.down != heartbeat.down:
                    heartbeat.down = state.down
                    self.store.put_heartbeat(heartbeat)
        return self.notifier.dispatch(outbox)


def create_app(monitor: HeartbeatMonitor, secret: str) -> Flask:
    """Flask app exposing the heartbeat and health endpoints."""
    app = Flask(__name__)
    logger = logging.getLogger("http")

    @app.route("/health")
    def health():
        return "ok", 200

    @app.route("/heartbeat/<device_id>")
    def heartbeat(device_id):
        supplied = request.args.get("secret", "")
        if not secret or not hmac.compare_digest(supplied, secret):
            logger.warning(f"Rejected heartbeat for {device_id} from {request.remote_addr}")
            return jsonify({"ok": False, "error": "forbidden"}), 403
        monitor.record(device_id, request.args.get("status", "ok"), utc_now())
        return jsonify({"ok": True})

    return app
