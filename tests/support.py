"""Shared fixtures: a temporary document store and a mocked Telegram client."""

import os
import shutil
import tempfile
import unittest
from datetime import datetime, timezone
from unittest.mock import Mock

from kitchen_ops.models import Partner, StaffRecord
from kitchen_ops.notify import Notifier
from kitchen_ops.store import DocumentStore

# 2024-05-01 11:30 in Asia/Kolkata
T0 = datetime(2024, 5, 1, 6, 0, tzinfo=timezone.utc)


class StoreTestCase(unittest.TestCase):
    """Fresh JSON document on disk and a notifier whose sends are recorded."""

    def setUp(self):
        self.tmpdir = tempfile.mkdtemp()
        self.path = os.path.join(self.tmpdir, "db.json")
        self.store = DocumentStore(self.path)
        self.store.load()
        self.client = Mock()
        self.client.send_message.return_value = True
        self.client.use_test_chat = False
        self.notifier = Notifier(self.client)

    def tearDown(self):
        shutil.rmtree(self.tmpdir, ignore_errors=True)

    def add_partner(self, partner_id, name, role="owner", tz="UTC"):
        with self.store.transaction():
            self.store.put_partner(Partner(id=str(partner_id), name=name, role=role, tz=tz))

    def add_staff(self, staff_id, name, **fields):
        with self.store.transaction():
            self.store.put_staff(StaffRecord(id=str(staff_id), name=name, **fields))

    def sent(self):
        """(chat_id, text, keyboard) for every send so far."""
        return [
            (call.args[0], call.args[1], call.kwargs.get("reply_markup"))
            for call in self.client.send_message.call_args_list
        ]

    def sent_texts(self):
        return [text for _, text, _ in self.sent()]

    def reset_sends(self):
        self.client.send_message.reset_mock()
