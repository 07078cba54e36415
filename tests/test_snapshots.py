import unittest
from datetime import date, timedelta

from dlsnap.errors import InvalidDateError, InvalidTotalError
from dlsnap.pipeline.snapshots import build_document, compute_stats, merge_series, normalize_series


class MergeSeriesTests(unittest.TestCase):
    def test_window_keeps_most_recent_days(self):
        merged = merge_series(
            {"2026-02-15": 10, "2026-02-16": 11, "2026-02-17": 12},
            "2026-02-18",
            13,
            2,
        )
        self.assertEqual(merged, {"2026-02-17": 12, "2026-02-18": 13})
        self.assertEqual(list(merged), ["2026-02-17", "2026-02-18"])

    def test_today_is_overwritten_and_floored(self):
        merged = merge_series({"2026-02-18": 5}, "2026-02-18", 7.9, 45)
        self.assertEqual(merged, {"2026-02-18": 7})

    def test_never_exceeds_window(self):
        start = date(2025, 12, 1)
        series = {(start + timedelta(days=i)).isoformat(): i for i in range(90)}
        today = (start + timedelta(days=90)).isoformat()
        merged = merge_series(series, today, 500, 45)
        self.assertEqual(len(merged), 45)
        self.assertEqual(merged[today], 500)
        self.assertEqual(min(merged), (start + timedelta(days=46)).isoformat())

    def test_future_entries_are_dropped(self):
        merged = merge_series({"2026-02-19": 99, "2026-02-17": 1}, "2026-02-18", 2, 10)
        self.assertEqual(merged, {"2026-02-17": 1, "2026-02-18": 2})

    def test_malformed_entries_are_dropped(self):
        existing = {
            "bad": 1,
            "2026-02-17": -1,
            "2026-02-16": "7",
            "2026-02-15": 4.9,
            "2026-02-14": float("nan"),
            "2026-02-13": True,
            "2026-02-30": 3,
            "2026-02-12": float("inf"),
        }
        merged = merge_series(existing, "2026-02-18", 20.2, 10)
        self.assertEqual(merged, {"2026-02-15": 4, "2026-02-18": 20})

    def test_non_mapping_series_starts_empty(self):
        self.assertEqual(merge_series(["2026-02-17"], "2026-02-18", 1, 5), {"2026-02-18": 1})
        self.assertEqual(normalize_series(None), {})

    def test_invalid_date(self):
        for bad in ("2026/02/18", "2026-13-01", "2026-2-18", "", None):
            with self.subTest(bad=bad):
                with self.assertRaises(InvalidDateError):
                    merge_series({}, bad, 1, 5)

    def test_invalid_total(self):
        for bad in (-1, float("nan"), float("inf"), "5", None, True):
            with self.subTest(bad=bad):
                with self.assertRaises(InvalidTotalError):
                    merge_series({}, "2026-02-18", bad, 5)

    def test_window_must_be_positive(self):
        with self.assertRaises(ValueError):
            merge_series({}, "2026-02-18", 1, 0)


class ComputeStatsTests(unittest.TestCase):
    def test_exact_day_baseline_and_partial_week_month(self):
        series = {"2026-02-17": 12, "2026-02-18": 13}
        result = compute_stats(13, series, "2026-02-18")
        self.assertEqual(result["stats"], {"total": 13, "day": 1, "week": 1, "month": 1})
        self.assertEqual(result["partial"], {"day": False, "week": True, "month": True})

    def test_all_exact_baselines(self):
        series = {"2026-01-19": 100, "2026-02-11": 150, "2026-02-17": 190, "2026-02-18": 200}
        result = compute_stats(200, series, "2026-02-18")
        self.assertEqual(result["stats"], {"total": 200, "day": 10, "week": 50, "month": 100})
        self.assertEqual(result["partial"], {"day": False, "week": False, "month": False})

    def test_prefers_closest_entry_after_cutoff(self):
        series = {"2026-02-01": 5, "2026-02-13": 40, "2026-02-15": 60}
        result = compute_stats(100, series, "2026-02-18")
        # week cutoff is 2026-02-11; 2026-02-13 is the earliest point after it
        self.assertEqual(result["stats"]["week"], 60)
        self.assertTrue(result["partial"]["week"])

    def test_falls_back_to_latest_entry_before_cutoff(self):
        series = {"2026-01-01": 5, "2026-01-10": 8}
        result = compute_stats(20, series, "2026-02-18")
        self.assertEqual(result["stats"]["day"], 12)
        self.assertEqual(result["stats"]["week"], 12)
        self.assertEqual(result["stats"]["month"], 12)
        self.assertEqual(result["partial"], {"day": True, "week": True, "month": True})

    def test_empty_series_is_partial_and_zero(self):
        result = compute_stats(42, {}, "2026-02-18")
        self.assertEqual(result["stats"], {"total": 42, "day": 0, "week": 0, "month": 0})
        self.assertEqual(result["partial"], {"day": True, "week": True, "month": True})

    def test_regressed_total_clamps_to_zero(self):
        series = {"2026-02-17": 50, "2026-02-18": 30}
        result = compute_stats(30, series, "2026-02-18")
        self.assertEqual(result["stats"]["day"], 0)
        self.assertFalse(result["partial"]["day"])

    def test_deltas_never_negative(self):
        for total in (0, 1, 10, 1000):
            for baseline in (0, 5, 10, 5000):
                result = compute_stats(total, {"2026-02-17": baseline}, "2026-02-18")
                self.assertEqual(result["stats"]["day"], max(0, total - baseline))


class BuildDocumentTests(unittest.TestCase):
    def test_document_shape(self):
        doc = build_document(
            owner="octo",
            repo="demo",
            visibility="public",
            generated_at="2026-02-18T00:00:00.000Z",
            total=120,
            today_date="2026-02-18",
            window_days=45,
            series={"2026-02-18": 120, "2026-02-17": 100},
            hourly_enabled=False,
        )
        self.assertEqual(doc["schemaVersion"], "1")
        self.assertEqual(doc["stats"]["day"], 20)
        self.assertFalse(doc["partial"]["day"])
        self.assertEqual(
            doc["snapshots"],
            {
                "windowDays": 45,
                "count": 2,
                "firstDate": "2026-02-17",
                "lastDate": "2026-02-18",
                "series": {"2026-02-17": 100, "2026-02-18": 120},
            },
        )
        self.assertEqual(doc["profile"], {"defaultMode": "daily", "hourlyEnabled": False})

    def test_hourly_profile_and_empty_meta(self):
        doc = build_document(
            owner="octo",
            repo="demo",
            visibility="private",
            generated_at="2026-02-18T00:00:00.000Z",
            total=0,
            today_date="2026-02-18",
            window_days=7,
            series={},
            hourly_enabled=True,
        )
        self.assertEqual(doc["profile"]["defaultMode"], "hourly")
        self.assertIsNone(doc["snapshots"]["firstDate"])
        self.assertIsNone(doc["snapshots"]["lastDate"])
        self.assertEqual(doc["snapshots"]["count"], 0)


if __name__ == "__main__":
    unittest.main()
