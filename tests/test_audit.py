import io
import json
import unittest
from contextlib import redirect_stdout
from dataclasses import replace
from unittest.mock import patch

from loop_ledger.core.settings import S
from loop_ledger.services import audit


class TestAuditEvent(unittest.TestCase):
    def test_writes_one_json_line(self):
        buf = io.StringIO()
        with patch.object(audit, "S", replace(S, audit_log_enabled=True)), redirect_stdout(buf):
            audit.audit_event("usage_consume", "device:d1", outcome="allowed", source="free")

        lines = buf.getvalue().splitlines()
        self.assertEqual(len(lines), 1)
        payload = json.loads(lines[0])
        self.assertEqual(payload["event"], "usage_consume")
        self.assertEqual(payload["subject"], "device:d1")
        self.assertEqual(payload["source"], "free")
        self.assertIn("ts", payload)

    def test_disabled(self):
        buf = io.StringIO()
        with patch.object(audit, "S", replace(S, audit_log_enabled=False)), redirect_stdout(buf):
            audit.audit_event("usage_consume", "device:d1")
        self.assertEqual(buf.getvalue(), "")
