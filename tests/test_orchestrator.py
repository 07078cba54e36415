import os
import tempfile
import unittest
from datetime import datetime, timezone
from pathlib import Path
from unittest.mock import MagicMock, patch

from structlog.testing import capture_logs

from dlsnap.errors import GitHubRequestError
from dlsnap.main import main
from dlsnap.pipeline.orchestrator import run_snapshot
from tests._fakes import FakeStore, make_settings

NOW = datetime(2026, 2, 18, 12, 0, tzinfo=timezone.utc)


def _read_outputs(path: Path) -> dict:
    return dict(line.split("=", 1) for line in path.read_text(encoding="utf-8").splitlines())


class RunSnapshotTests(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)
        self.output_file = Path(self.tmp.name) / "output.txt"
        self.summary_file = Path(self.tmp.name) / "summary.md"

    def _run(self, settings, store, now=NOW):
        return run_snapshot(
            settings,
            store,
            now,
            output_file=str(self.output_file),
            summary_file=str(self.summary_file),
        )

    def test_first_run_writes_outputs_and_summary(self):
        settings = make_settings(owner="octo", repo="demo")
        store = FakeStore(total=42)
        with capture_logs() as logs:
            result = self._run(settings, store)

        self.assertTrue(result.publish.changed)
        self.assertIn("gh-pages", store.branches)
        outputs = _read_outputs(self.output_file)
        self.assertEqual(
            list(outputs),
            [
                "owner", "repo", "generated_at", "total", "day", "week", "month",
                "partial_day", "partial_week", "partial_month", "chart_output_path",
                "chart_published", "chart_published_count", "chart_total_count", "chart_files",
                "output_branch", "output_path", "total_source", "published",
            ],
        )
        self.assertEqual(outputs["total"], "42")
        self.assertEqual(outputs["partial_day"], "true")
        self.assertEqual(outputs["published"], "true")
        self.assertEqual(outputs["total_source"], "api")
        self.assertEqual(outputs["chart_published"], "false")
        self.assertEqual(outputs["chart_total_count"], "0")
        self.assertEqual(outputs["chart_files"], "")
        self.assertEqual(outputs["generated_at"], "2026-02-18T12:00:00.000Z")

        summary = self.summary_file.read_text(encoding="utf-8")
        self.assertTrue(summary.startswith("## GitHub Downloads Snapshot"))
        self.assertIn("- Chart: **disabled**", summary)
        self.assertIn("- Total: **42**", summary)

        events = [entry["event"] for entry in logs]
        self.assertIn("run_started", events)
        self.assertIn("run_finished", events)
        self.assertEqual(events.count("run_step_done"), 3)

    def test_second_run_reports_no_change(self):
        settings = make_settings(owner="octo", repo="demo")
        store = FakeStore(total=42)
        with capture_logs():
            self._run(settings, store)
            self.output_file.unlink()
            result = self._run(settings, store, NOW.replace(hour=15))
        self.assertFalse(result.publish.changed)
        self.assertEqual(_read_outputs(self.output_file)["published"], "false")
        self.assertIn("no (no material change)", self.summary_file.read_text(encoding="utf-8"))

    @patch("dlsnap.pipeline.publish.build_chart_svg", return_value="<svg/>")
    def test_chart_outputs(self, _render):
        settings = make_settings(owner="octo", repo="demo", publish_chart=True)
        store = FakeStore(total=3)
        with capture_logs():
            self._run(settings, store)
        outputs = _read_outputs(self.output_file)
        self.assertEqual(outputs["chart_published"], "true")
        self.assertEqual(outputs["chart_published_count"], "2")
        self.assertEqual(outputs["chart_files"], "gh-dl/downloads-trend.svg,gh-dl/charts/total-trend--slate.svg")
        self.assertIn("updated: 2/2", self.summary_file.read_text(encoding="utf-8"))

    def test_missing_default_branch_falls_back_to_main(self):
        settings = make_settings(owner="octo", repo="demo", output_branch="stats")
        store = FakeStore(total=1, repo_meta={"private": False})
        calls = []
        original = store.ensure_branch

        def spy(owner, repo, branch, default_branch):
            calls.append(default_branch)
            return original(owner, repo, branch, default_branch)

        store.ensure_branch = spy
        with capture_logs():
            self._run(settings, store)
        self.assertEqual(calls, ["main"])
        self.assertIn(("gh-dl/downloads.json", "stats"), store.files)

    def test_failure_is_logged_and_raised(self):
        settings = make_settings(owner="octo", repo="demo")
        store = FakeStore(total=1)
        store.get_repository = MagicMock(side_effect=GitHubRequestError("Not Found", status=404))
        with capture_logs() as logs:
            with self.assertRaises(GitHubRequestError):
                self._run(settings, store)
        self.assertIn("run_failed", [entry["event"] for entry in logs])
        self.assertFalse(self.output_file.exists())


@patch("dlsnap.main.setup_logging")
class MainTests(unittest.TestCase):
    def test_missing_token_exits_non_zero(self, _logging):
        env = {"GITHUB_REPOSITORY": "octo/demo"}
        with patch.dict(os.environ, env, clear=True), patch("dlsnap.main.GitHubClient") as client_cls:
            with capture_logs():
                code = main([])
        self.assertEqual(code, 1)
        client_cls.assert_not_called()

    def test_invalid_configuration_exits_non_zero(self, _logging):
        env = {"GITHUB_REPOSITORY": "octo/demo", "GITHUB_TOKEN": "t", "INPUT_WINDOW_DAYS": "0"}
        with patch.dict(os.environ, env, clear=True):
            with capture_logs():
                self.assertEqual(main([]), 1)

    def test_successful_run(self, _logging):
        with tempfile.TemporaryDirectory() as tmp:
            output_file = Path(tmp) / "output.txt"
            env = {
                "GITHUB_REPOSITORY": "octo/demo",
                "INPUT_TOKEN": "secret",
                "GITHUB_OUTPUT": str(output_file),
            }
            store = FakeStore(total=9)
            with patch.dict(os.environ, env, clear=True), patch("dlsnap.main.GitHubClient") as client_cls:
                client_cls.return_value.__enter__.return_value = store
                with capture_logs():
                    code = main([])
            self.assertEqual(code, 0)
            self.assertEqual(client_cls.call_args.args, ("secret",))
            self.assertEqual(_read_outputs(output_file)["total"], "9")


if __name__ == "__main__":
    unittest.main()
