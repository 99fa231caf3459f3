from contextlib import redirect_stderr, redirect_stdout
from io import StringIO
from pathlib import Path
from tempfile import TemporaryDirectory
import logging
import unittest
from unittest import mock

from queue_fixtures import create_queue_db, sqlite_url

from runnerscale.cli import build_parser, main
from runnerscale.reconciler import Reconciler


class CliTest(unittest.TestCase):
    def setUp(self) -> None:
        self.temp_dir = TemporaryDirectory()
        self.root = Path(self.temp_dir.name)
        self.db_path = self.root / "queue.db"
        self.record = self.root / "record.txt"
        up = self.root / "up.sh"
        up.write_text(f'#!/bin/sh\necho "$RUNNER_NAME" > {self.record}\n', encoding="utf-8")
        up.chmod(0o755)
        self.config_path = self.root / "runnerscale.yaml"
        self.config_path.write_text(
            f"""
database:
  url: "{sqlite_url(self.db_path)}"
scaling:
  up_command: {up}
  down_command: {up}
  max_runners: 3
log:
  path: ./runnerscale.log
""".strip(),
            encoding="utf-8",
        )

    def tearDown(self) -> None:
        logger = logging.getLogger("runnerscale")
        for handler in logger.handlers:
            handler.close()
        logger.handlers.clear()
        self.temp_dir.cleanup()

    def test_run_once_flag(self) -> None:
        parser = build_parser()
        args = parser.parse_args(["--config", "runnerscale.yaml", "run", "--once", "--dry-run"])
        self.assertEqual(args.command, "run")
        self.assertTrue(args.once)
        self.assertTrue(args.dry_run)

    def test_status(self) -> None:
        create_queue_db(self.db_path, ["runner1", "runner2"], [(None, 1), ("runner1", 2)]).dispose()
        output = StringIO()
        with redirect_stdout(output):
            code = main(["--config", str(self.config_path), "status"])
        self.assertEqual(code, 0)
        text = output.getvalue()
        self.assertIn("pending      1", text)
        self.assertIn("runner2 (idle)", text)
        self.assertIn("Next action: scale_down:runner2", text)
        self.assertFalse(self.record.exists())

    def test_run_once_scales_up(self) -> None:
        jobs = [(None, 1)] * 10
        create_queue_db(self.db_path, ["runner1"], jobs).dispose()
        code = main(["--config", str(self.config_path), "run", "--once"])
        self.assertEqual(code, 0)
        self.assertEqual(self.record.read_text(encoding="utf-8").strip(), "runner2")
        self.assertIn("reconcile_summary", (self.root / "runnerscale.log").read_text(encoding="utf-8"))

    def test_run_once_dry_run(self) -> None:
        create_queue_db(self.db_path, ["runner1"], [(None, 1)] * 10).dispose()
        code = main(["--config", str(self.config_path), "run", "--once", "--dry-run"])
        self.assertEqual(code, 0)
        self.assertFalse(self.record.exists())

    def test_run_once_reports_failed_cycle(self) -> None:
        # Database exists but has no queue tables.
        self.db_path.touch()
        self.assertEqual(main(["--config", str(self.config_path), "run", "--once"]), 1)

    def test_startup_failure(self) -> None:
        missing = self.root / "missing" / "queue.db"
        self.config_path.write_text(
            self.config_path.read_text(encoding="utf-8").replace(str(self.db_path), str(missing)),
            encoding="utf-8",
        )
        self.assertEqual(main(["--config", str(self.config_path), "status"]), 1)

    def with_metrics_address(self, address: str) -> None:
        body = self.config_path.read_text(encoding="utf-8")
        self.config_path.write_text(body + f'\nmetrics:\n  listen_address: "{address}"\n', encoding="utf-8")

    def test_run_serves_metrics_until_interrupted(self) -> None:
        create_queue_db(self.db_path, ["runner1"], []).dispose()
        self.with_metrics_address("127.0.0.1:0")
        with mock.patch.object(Reconciler, "run_forever", side_effect=KeyboardInterrupt) as run_forever:
            code = main(["--config", str(self.config_path), "run"])
        self.assertEqual(code, 0)
        run_forever.assert_called_once_with()
        log_text = (self.root / "runnerscale.log").read_text(encoding="utf-8")
        self.assertIn("metrics_listening", log_text)
        self.assertIn("keyboard_interrupt", log_text)

    def test_run_rejects_bad_metrics_address(self) -> None:
        create_queue_db(self.db_path, ["runner1"], []).dispose()
        self.with_metrics_address("localhost:metrics")
        with mock.patch.object(Reconciler, "run_forever") as run_forever:
            code = main(["--config", str(self.config_path), "run"])
        self.assertEqual(code, 1)
        run_forever.assert_not_called()

    def test_null_setting_is_a_usage_error(self) -> None:
        self.config_path.write_text(
            self.config_path.read_text(encoding="utf-8").replace("  max_runners: 3", "  min_runners:"),
            encoding="utf-8",
        )
        with redirect_stderr(StringIO()), self.assertRaises(SystemExit) as ctx:
            main(["--config", str(self.config_path), "status"])
        self.assertEqual(ctx.exception.code, 2)


if __name__ == "__main__":
    unittest.main()
