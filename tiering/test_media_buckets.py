"""Unit tests for bucket parsing and ordering."""

import unittest
from datetime import date
from pathlib import Path

from media_buckets import Bucket, parse_day, parse_hour
from media_config import Category


class ParseTest(unittest.TestCase):

    def test_parse_day(self):
        self.assertEqual(parse_day("2024-03-01"), date(2024, 3, 1))
        self.assertIsNone(parse_day("2024-3-1"))
        self.assertIsNone(parse_day("2024-02-30"))
        self.assertIsNone(parse_day("cam1"))

    def test_parse_hour(self):
        self.assertEqual(parse_hour("00"), 0)
        self.assertEqual(parse_hour("23"), 23)
        self.assertIsNone(parse_hour("24"))
        self.assertIsNone(parse_hour("7"))


class BucketOrderingTest(unittest.TestCase):

    def test_orders_by_day_before_category(self):
        older_clip = Bucket(date(2024, 1, 1), Category.CLIPS)
        newer_recording = Bucket(date(2024, 1, 2), Category.RECORDINGS)
        self.assertLess(older_clip, newer_recording)

    def test_same_day_orders_by_category_name(self):
        buckets = [
            Bucket(date(2024, 1, 1), Category.SNAPSHOTS),
            Bucket(date(2024, 1, 1), Category.RECORDINGS),
            Bucket(date(2024, 1, 1), Category.CLIPS),
            Bucket(date(2024, 1, 1), Category.EXPORTS),
        ]
        self.assertEqual(
            [b.category for b in sorted(buckets)],
            [Category.CLIPS, Category.EXPORTS, Category.RECORDINGS, Category.SNAPSHOTS],
        )

    def test_day_bucket_sorts_before_hour_zero(self):
        day = Bucket(date(2024, 1, 1), Category.RECORDINGS)
        hour0 = Bucket(date(2024, 1, 1), Category.RECORDINGS, hour=0)
        hour5 = Bucket(date(2024, 1, 1), Category.CLIPS, hour=5)
        self.assertEqual(sorted([hour5, hour0, day]), [day, hour0, hour5])

    def test_camera_breaks_ties_within_hour(self):
        a = Bucket(date(2024, 1, 1), Category.RECORDINGS, hour=3, camera="back")
        b = Bucket(date(2024, 1, 1), Category.RECORDINGS, hour=3, camera="front")
        self.assertLess(a, b)

    def test_category_breaks_ties_before_camera(self):
        recording = Bucket(date(2024, 1, 1), Category.RECORDINGS, camera="cam_a")
        clip = Bucket(date(2024, 1, 1), Category.CLIPS, camera="cam_b")
        self.assertEqual(sorted([recording, clip]), [clip, recording])

    def test_path_is_not_identity(self):
        a = Bucket(date(2024, 1, 1), Category.CLIPS, path=Path("/a"))
        b = Bucket(date(2024, 1, 1), Category.CLIPS, path=Path("/b"))
        self.assertEqual(a, b)

    def test_key(self):
        self.assertEqual(Bucket(date(2024, 1, 1), Category.CLIPS).key, "2024-01-01")
        self.assertEqual(Bucket(date(2024, 1, 1), Category.RECORDINGS, hour=7, camera="gate").key,
                         "2024-01-01/07/gate")
        self.assertEqual(str(Bucket(date(2024, 1, 1), Category.CLIPS, hour=7)), "clips:2024-01-01/07")


if __name__ == "__main__":
    unittest.main()
