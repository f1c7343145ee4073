import json
import logging
import os
import sys
import unittest
from unittest import mock

from cloudrun_kms_rotator.logging import JsonLogFormatter, bind_request_id, get_request_id


def _record(msg: str = "hello", *, level: int = logging.INFO, **extra) -> logging.LogRecord:
    rec = logging.LogRecord("cloudrun_kms_rotator", level, __file__, 1, msg, None, None)
    for k, v in extra.items():
        setattr(rec, k, v)
    return rec


class TestJsonLogFormatter(unittest.TestCase):
    def setUp(self) -> None:
        self.fmt = JsonLogFormatter(service="svc", env="test", version="v1", sha="abc")

    def test_core_fields(self) -> None:
        out = json.loads(self.fmt.format(_record(event_type="webhook.rejected", reason="invalid_method")))
        self.assertEqual(out["severity"], "INFO")
        self.assertEqual(out["service"], "svc")
        self.assertEqual(out["env"], "test")
        self.assertEqual(out["version"], "v1")
        self.assertEqual(out["sha"], "abc")
        self.assertEqual(out["event_type"], "webhook.rejected")
        self.assertEqual(out["message"], "hello")
        self.assertEqual(out["reason"], "invalid_method")
        self.assertIn("timestamp", out)

    def test_event_type_defaults_to_log(self) -> None:
        out = json.loads(self.fmt.format(_record()))
        self.assertEqual(out["event_type"], "log")
        self.assertIsNone(out["request_id"])

    def test_warn_is_normalized(self) -> None:
        out = json.loads(self.fmt.format(_record(level=logging.WARNING)))
        self.assertEqual(out["severity"], "WARNING")

    def test_message_newlines_are_flattened(self) -> None:
        out = json.loads(self.fmt.format(_record("a\nb")))
        self.assertEqual(out["message"], "a b")

    def test_request_id_from_context(self) -> None:
        with bind_request_id(request_id="rid-7") as rid:
            self.assertEqual(rid, "rid-7")
            self.assertEqual(get_request_id(), "rid-7")
            out = json.loads(self.fmt.format(_record()))
        self.assertEqual(out["request_id"], "rid-7")
        self.assertEqual(out["correlation_id"], "rid-7")
        self.assertIsNone(get_request_id())

    def test_generated_request_id(self) -> None:
        with bind_request_id() as rid:
            self.assertTrue(rid)
            self.assertEqual(get_request_id(), rid)

    def test_exception_is_attached(self) -> None:
        try:
            raise ValueError("boom")
        except ValueError:
            rec = _record(level=logging.ERROR)
            rec.exc_info = sys.exc_info()
        out = json.loads(self.fmt.format(rec))
        self.assertIn("ValueError: boom", out["exception"])

    def test_version_and_sha_default_from_env(self) -> None:
        env = {"K_REVISION": "kms-rotator-00012-abc", "GIT_SHA": "deadbeef", "APP_VERSION": "ignored"}
        with mock.patch.dict(os.environ, env):
            out = json.loads(JsonLogFormatter(service="svc").format(_record()))
        self.assertEqual(out["version"], "kms-rotator-00012-abc")
        self.assertEqual(out["sha"], "deadbeef")

    def test_non_serializable_extra_is_stringified(self) -> None:
        out = json.loads(self.fmt.format(_record(obj=object())))
        self.assertIsInstance(out["obj"], str)


if __name__ == "__main__":
    unittest.main()
