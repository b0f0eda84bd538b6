from __future__ import annotations

from datetime import date
from io import StringIO
from unittest.mock import Mock, patch

from django.core.management import call_command
from django.test import SimpleTestCase, override_settings

from departures.schedule import (
    CivilInstant,
    Departure,
    Departures,
    FeedSnapshot,
    InsufficientData,
    OutOfService,
    Weekday,
)

INSTANT = CivilInstant(date(2024, 1, 3), Weekday.WEDNESDAY, 21900)
SNAPSHOT = FeedSnapshot(version=2, loaded_at=0.0, calendar_rules={}, exceptions=(), trips={})


@override_settings(TRANSIT_ROUTE_ID="4", TRANSIT_DIRECTION_ID="0", TRANSIT_STOP_ID=None, TRANSIT_HEADSIGN=None)
class NextDeparturesCommandTests(SimpleTestCase):
    @patch("departures.management.commands.next_departures.get_next_departures")
    def test_prints_departures(self, mock_next: Mock):
        mock_next.return_value = (Departures((Departure(22200, 300, "5 min"),)), INSTANT, SNAPSHOT)
        out = StringIO()
        call_command("next_departures", stdout=out)
        text = out.getvalue()
        self.assertIn("Route 4  direction 0", text)
        self.assertIn("2024-01-03 Wednesday  06:05:00", text)
        self.assertIn("Feed snapshot v2", text)
        self.assertIn("[1]  5 min", text)
        self.assertIn("[2]  —", text)

    @patch("departures.management.commands.next_departures.get_next_departures")
    def test_options_reach_selector(self, mock_next: Mock):
        mock_next.return_value = (OutOfService("no departures left today"), INSTANT, SNAPSHOT)
        out = StringIO()
        call_command("next_departures", "--route", "2", "--stop", "S1", "--refresh", stdout=out)
        selector = mock_next.call_args.kwargs["selector"]
        self.assertEqual((selector.route_id, selector.direction_id, selector.stop_id), ("2", "0", "S1"))
        self.assertTrue(mock_next.call_args.kwargs["refresh"])
        self.assertIn("Out of service: no departures left today", out.getvalue())

    @patch("departures.management.commands.next_departures.get_next_departures")
    def test_any_direction(self, mock_next: Mock):
        mock_next.return_value = (OutOfService("no departures left today"), INSTANT, SNAPSHOT)
        out = StringIO()
        call_command("next_departures", "--direction", "any", stdout=out)
        self.assertIsNone(mock_next.call_args.kwargs["selector"].direction_id)
        self.assertNotIn("direction", out.getvalue())

    @patch("departures.management.commands.next_departures.get_next_departures")
    def test_unavailable(self, mock_next: Mock):
        mock_next.return_value = (InsufficientData("GTFS download failed"), INSTANT, None)
        out = StringIO()
        call_command("next_departures", stdout=out)
        self.assertIn("Data unavailable: GTFS download failed", out.getvalue())
        self.assertNotIn("Feed snapshot", out.getvalue())
