"""
オーバーレイ更新操作とランダム割り当ての挙動を検証するテスト。
Tests for overlay update operations and the random activity assigner.
"""
import random
import unittest

from backend.errors import UnknownActivity
from backend.itinerary_constants import ACTIVITY_CATALOG
from backend.itinerary_schedule import (
    add_activity,
    catalog_activity,
    enabled_activities,
    generate_random_schedule,
    set_activity,
    set_note,
)
from backend.schemas import Activity, DaySchedule, ScheduleOverlay, TourRecord

HIKING = Activity(name="Cameron Fall Hiking", timings=["1:00~1:15 PM - 3:00 PM"])
FISHING = Activity(name="Ice Fishing", timings=["10:30~10:50 AM - 1:45 PM"])
CITY = Activity(name="City Tour", timings=["3:00 PM - 4:30 PM"])


def _overlay():
    return ScheduleOverlay(days={
        1: DaySchedule(activities=[CITY], note="day one"),
        2: DaySchedule(activities=[HIKING, FISHING], note="day two"),
    })


class SetActivityTests(unittest.TestCase):
    def test_remove_leaves_other_days_untouched(self):
        """
        EN: Test remove leaves other days untouched behavior.
        JP: 削除が1件だけで他の日に影響しないことを検証するテスト。
        """
        overlay = _overlay()
        updated = set_activity(overlay, 2, 0, None)

        self.assertEqual(updated.day(2).activities, [FISHING])
        self.assertEqual(updated.day(2).note, "day two")
        self.assertEqual(updated.day(1), overlay.day(1))

    def test_original_overlay_is_not_mutated(self):
        overlay = _overlay()
        set_activity(overlay, 2, 0, None)
        add_activity(overlay, 2, "nlt")
        set_note(overlay, 2, "changed")
        self.assertEqual(overlay.day(2).activities, [HIKING, FISHING])
        self.assertEqual(overlay.day(2).note, "day two")

    def test_replace_in_range(self):
        updated = set_activity(_overlay(), 2, 1, CITY)
        self.assertEqual(updated.day(2).activities, [HIKING, CITY])

    def test_replace_out_of_range_appends(self):
        updated = set_activity(_overlay(), 1, 5, HIKING)
        self.assertEqual(updated.day(1).activities, [CITY, HIKING])

    def test_remove_out_of_range_is_noop(self):
        overlay = _overlay()
        updated = set_activity(overlay, 1, 3, None)
        self.assertEqual(updated.day(1), overlay.day(1))

    def test_set_on_missing_day_creates_it(self):
        updated = set_activity(ScheduleOverlay(), 3, 0, HIKING)
        self.assertEqual(updated.day(3).activities, [HIKING])
        self.assertEqual(updated.day(3).note, "")


class AddActivityAndNoteTests(unittest.TestCase):
    def test_add_uses_first_timing_slot(self):
        updated = add_activity(_overlay(), 1, "hiking")
        added = updated.day(1).activities[-1]
        self.assertEqual(added.name, "Cameron Fall Hiking")
        self.assertEqual(added.timings, [ACTIVITY_CATALOG["hiking"]["timings"][0]])
        self.assertEqual(len(updated.day(1).activities), 2)

    def test_add_unknown_activity_raises(self):
        with self.assertRaises(UnknownActivity):
            add_activity(_overlay(), 1, "surfing")
        with self.assertRaises(UnknownActivity):
            catalog_activity("surfing")

    def test_set_note_replaces_and_clears(self):
        overlay = set_note(_overlay(), 1, "Pick up at 9")
        self.assertEqual(overlay.day(1).note, "Pick up at 9")
        self.assertEqual(overlay.day(1).activities, [CITY])
        self.assertEqual(set_note(overlay, 1, "").day(1).note, "")


class RandomScheduleTests(unittest.TestCase):
    def _tour(self, **flags):
        return TourRecord(id=5, arrival="2024-06-01|10:00|AA1", departure="2024-06-05|15:00|AA2", **flags)

    def test_enabled_activities_requires_exact_yes(self):
        """
        EN: Test enabled activities requires exact yes behavior.
        JP: "Yes" の完全一致のみ有効とみなすことを検証するテスト。
        """
        tour = self._tour(hiking="Yes", fishing="yes", nlt=" Yes", city_tour="Yes", dnr="Yes")
        self.assertEqual(enabled_activities(tour), ["city_tour", "hiking"])

    def test_middle_days_get_one_or_two_enabled_activities(self):
        """
        EN: Test middle days get one or two enabled activities behavior.
        JP: 中日だけに有効なアクティビティが1〜2件割り当てられることを検証するテスト。
        """
        tour = self._tour(hiking="Yes", fishing="Yes")
        allowed = {ACTIVITY_CATALOG["hiking"]["name"], ACTIVITY_CATALOG["fishing"]["name"]}

        for seed in range(20):
            with self.subTest(seed=seed):
                overlay = generate_random_schedule(tour, 5, random.Random(seed))
                self.assertEqual(overlay.day(0).activities, [])
                self.assertEqual(overlay.day(4).activities, [])
                for index in (1, 2, 3):
                    activities = overlay.day(index).activities
                    self.assertIn(len(activities), (1, 2))
                    self.assertTrue({activity.name for activity in activities} <= allowed)
                    self.assertEqual(len({activity.name for activity in activities}), len(activities))
                    for activity in activities:
                        self.assertEqual(len(activity.timings), 1)

    def test_timings_come_from_the_catalog(self):
        tour = self._tour(nlt="Yes")
        overlay = generate_random_schedule(tour, 4, random.Random(3))
        for index in (1, 2):
            for activity in overlay.day(index).activities:
                self.assertIn(activity.timings[0], ACTIVITY_CATALOG["nlt"]["timings"])

    def test_same_seed_is_reproducible(self):
        tour = self._tour(hiking="Yes", fishing="Yes", nlt="Yes")
        first = generate_random_schedule(tour, 6, random.Random(42))
        second = generate_random_schedule(tour, 6, random.Random(42))
        self.assertEqual(first, second)

    def test_no_enabled_activities_gives_empty_days(self):
        overlay = generate_random_schedule(self._tour(), 4, random.Random(1))
        self.assertTrue(all(overlay.day(index).activities == [] for index in range(4)))

    def test_short_stays_have_no_middle_days(self):
        tour = self._tour(hiking="Yes")
        self.assertEqual(generate_random_schedule(tour, 2, random.Random(1)).day(1).activities, [])
        self.assertEqual(generate_random_schedule(tour, 1, random.Random(1)).day(0).activities, [])


if __name__ == "__main__":
    unittest.main()
