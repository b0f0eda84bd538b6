from __future__ import annotations

from datetime import date, datetime, timezone

from django.test import SimpleTestCase

from departures.clock import civil_instant
from departures.schedule import (
    ExceptionKind,
    ServiceCalendarRule,
    ServiceException,
    Trip,
    Weekday,
    active_services,
    trips_for_route,
)

WEEKDAYS = (True, True, True, True, True, False, False)
WEEKENDS = (False, False, False, False, False, True, True)


class ActiveServicesTests(SimpleTestCase):
    def setUp(self):
        self.rules = [
            ServiceCalendarRule("WD", "20240101", "20241231", WEEKDAYS),
            ServiceCalendarRule("WE", "20240101", "20241231", WEEKENDS),
            ServiceCalendarRule("SUMMER", "20240601", "20240831", WEEKDAYS),
        ]

    def test_rules_only_when_no_exceptions(self):
        # 2024-01-03 is a Wednesday
        self.assertEqual(active_services(self.rules, [], "20240103", Weekday.WEDNESDAY), {"WD"})
        self.assertEqual(active_services(self.rules, [], "20240106", Weekday.SATURDAY), {"WE"})
        self.assertEqual(active_services(self.rules, [], "20240703", Weekday.WEDNESDAY), {"WD", "SUMMER"})

    def test_date_range_is_inclusive(self):
        self.assertIn("SUMMER", active_services(self.rules, [], "20240603", Weekday.MONDAY))
        self.assertIn("SUMMER", active_services(self.rules, [], "20240830", Weekday.FRIDAY))
        self.assertNotIn("SUMMER", active_services(self.rules, [], "20240902", Weekday.MONDAY))

    def test_exceptions_for_other_dates_are_ignored(self):
        exceptions = [ServiceException("WD", "20240104", ExceptionKind.REMOVED)]
        self.assertEqual(active_services(self.rules, exceptions, "20240103", Weekday.WEDNESDAY), {"WD"})

    def test_removed_exception_drops_service(self):
        # Holiday on a Monday
        exceptions = [ServiceException("WD", "20240101", ExceptionKind.REMOVED)]
        self.assertEqual(active_services(self.rules, exceptions, "20240101", Weekday.MONDAY), set())

    def test_removed_exception_for_inactive_service_is_harmless(self):
        exceptions = [ServiceException("WE", "20240103", ExceptionKind.REMOVED)]
        self.assertEqual(active_services(self.rules, exceptions, "20240103", Weekday.WEDNESDAY), {"WD"})

    def test_added_exception_ignores_weekday_flag(self):
        exceptions = [ServiceException("WE", "20240101", ExceptionKind.ADDED)]
        result = active_services(self.rules, exceptions, "20240101", Weekday.MONDAY)
        self.assertEqual(result, {"WD", "WE"})

    def test_added_exception_without_calendar_rule(self):
        exceptions = [ServiceException("SPECIAL", "20240315", ExceptionKind.ADDED)]
        result = active_services([], exceptions, "20240315", Weekday.FRIDAY)
        self.assertEqual(result, {"SPECIAL"})

    def test_removed_wins_over_added_in_either_order(self):
        added = ServiceException("WE", "20240103", ExceptionKind.ADDED)
        removed = ServiceException("WE", "20240103", ExceptionKind.REMOVED)
        for exceptions in ([added, removed], [removed, added]):
            result = active_services(self.rules, exceptions, "20240103", Weekday.WEDNESDAY)
            self.assertNotIn("WE", result)
            self.assertIn("WD", result)

    def test_result_is_subset_of_declared_services(self):
        exceptions = [
            ServiceException("WD", "20240106", ExceptionKind.ADDED),
            ServiceException("WE", "20240106", ExceptionKind.REMOVED),
        ]
        declared = {r.service_id for r in self.rules} | {e.service_id for e in exceptions}
        for ymd, weekday in [("20240106", Weekday.SATURDAY), ("20240107", Weekday.SUNDAY)]:
            self.assertTrue(active_services(self.rules, exceptions, ymd, weekday) <= declared)

    def test_empty_when_nothing_matches(self):
        self.assertEqual(active_services(self.rules, [], "20250101", Weekday.WEDNESDAY), set())


class TripsForRouteTests(SimpleTestCase):
    def setUp(self):
        self.trips = [
            Trip("T1", "4", "WD", "0", "Berri-UQAM"),
            Trip("T2", "4", "WD", "1", "Longueuil"),
            Trip("T3", "4", "WE", "0", "Berri-UQAM"),
            Trip("T4", "1", "WD", "0", "Angrignon"),
            Trip("T5", "4", "WD", None, None),
        ]

    def test_route_only(self):
        self.assertEqual(trips_for_route(self.trips, "4"), {"T1", "T2", "T3", "T5"})

    def test_direction_filter(self):
        self.assertEqual(trips_for_route(self.trips, "4", direction_id="0"), {"T1", "T3"})

    def test_headsign_substring_is_case_insensitive(self):
        self.assertEqual(trips_for_route(self.trips, "4", headsign="longueuil"), {"T2"})

    def test_filters_are_conjunctive(self):
        self.assertEqual(trips_for_route(self.trips, "4", direction_id="1", headsign="berri"), set())

    def test_unknown_route_gives_empty_set(self):
        self.assertEqual(trips_for_route(self.trips, "99"), set())


class CivilInstantTests(SimpleTestCase):
    def test_converts_to_feed_timezone(self):
        # 11:05 UTC is 06:05 EST
        instant = civil_instant("America/Toronto", datetime(2024, 1, 3, 11, 5, tzinfo=timezone.utc))
        self.assertEqual(instant.date, date(2024, 1, 3))
        self.assertEqual(instant.weekday, Weekday.WEDNESDAY)
        self.assertEqual(instant.seconds, 21900)
        self.assertEqual(instant.ymd, "20240103")

    def test_local_date_can_differ_from_utc_date(self):
        # 03:30 UTC on Thursday is still Wednesday evening in Toronto
        instant = civil_instant("America/Toronto", datetime(2024, 1, 4, 3, 30, tzinfo=timezone.utc))
        self.assertEqual(instant.ymd, "20240103")
        self.assertEqual(instant.weekday, Weekday.WEDNESDAY)
        self.assertEqual(instant.seconds, 22 * 3600 + 30 * 60)

    def test_previous_day_extends_clock(self):
        instant = civil_instant("America/Toronto", datetime(2024, 1, 1, 5, 5, tzinfo=timezone.utc))
        yesterday = instant.previous_day()
        self.assertEqual(yesterday.ymd, "20231231")
        self.assertEqual(yesterday.weekday, Weekday.SUNDAY)
        self.assertEqual(yesterday.seconds, instant.seconds + 86400)

    def test_naive_datetime_rejected(self):
        with self.assertRaises(ValueError):
            civil_instant("America/Toronto", datetime(2024, 1, 3, 6, 5))

    def test_weekday_calendar_field(self):
        self.assertEqual(Weekday.MONDAY.calendar_field, "monday")
        self.assertEqual(Weekday.from_date(date(2024, 1, 7)), Weekday.SUNDAY)
