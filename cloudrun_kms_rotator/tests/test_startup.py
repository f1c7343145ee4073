import json
import os
import subprocess
import sys
import unittest
from pathlib import Path
from unittest import mock

from cloudrun_kms_rotator import main

REPO_ROOT = Path(__file__).resolve().parents[2]


def _import_main(**env_overrides: str) -> subprocess.CompletedProcess:
    env = dict(os.environ)
    env.pop("ROTATION_MODE", None)
    env.pop("LOG_LEVEL", None)
    env.update(env_overrides)
    env["PYTHONPATH"] = (str(REPO_ROOT) + os.pathsep + env.get("PYTHONPATH", "")).strip(os.pathsep)
    return subprocess.run(
        [sys.executable, "-c", "import cloudrun_kms_rotator.main"],
        capture_output=True,
        text=True,
        env=env,
        timeout=60,
    )


def _json_lines(out: str) -> list[dict]:
    lines = []
    for line in out.splitlines():
        line = line.strip()
        if line.startswith("{"):
            lines.append(json.loads(line))
    return lines


class TestImportTimeStartup(unittest.TestCase):
    def test_bad_rotation_mode_logs_startup_failed_and_exits_nonzero(self) -> None:
        proc = _import_main(ROTATION_MODE="bogus")
        self.assertNotEqual(proc.returncode, 0)

        events = [e for e in _json_lines(proc.stdout) if e.get("event_type") == "startup.failed"]
        self.assertEqual(len(events), 1, proc.stdout + proc.stderr)
        self.assertEqual(events[0]["severity"], "CRITICAL")
        self.assertEqual(events[0]["outcome"], "failure")
        self.assertIn("ROTATION_MODE", events[0]["error"])

    def test_unknown_log_level_still_starts(self) -> None:
        proc = _import_main(LOG_LEVEL="VERBOSE")
        self.assertEqual(proc.returncode, 0, proc.stdout + proc.stderr)

        events = [e for e in _json_lines(proc.stdout) if e.get("event_type") == "startup.config"]
        self.assertEqual(len(events), 1)
        self.assertEqual(events[0]["config"]["log_level"], "INFO")


class TestRun(unittest.TestCase):
    def test_server_exit_is_logged_and_becomes_status_1(self) -> None:
        with mock.patch("uvicorn.run", side_effect=SystemExit(3)):
            with self.assertLogs("cloudrun_kms_rotator", level="CRITICAL") as logs:
                with self.assertRaises(SystemExit) as ctx:
                    main.run()
        self.assertEqual(ctx.exception.code, 1)
        self.assertEqual(logs.records[-1].event_type, "startup.failed")

    def test_bind_error_is_logged_and_becomes_status_1(self) -> None:
        with mock.patch("uvicorn.run", side_effect=OSError("address already in use")):
            with self.assertLogs("cloudrun_kms_rotator", level="CRITICAL") as logs:
                with self.assertRaises(SystemExit) as ctx:
                    main.run()
        self.assertEqual(ctx.exception.code, 1)
        self.assertIn("address already in use", logs.records[-1].error)

    def test_clean_exit_is_not_a_failure(self) -> None:
        with mock.patch("uvicorn.run", side_effect=SystemExit(0)):
            with self.assertRaises(SystemExit) as ctx:
                main.run()
        self.assertEqual(ctx.exception.code, 0)


if __name__ == "__main__":
    unittest.main()
