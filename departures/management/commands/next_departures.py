from django.core.management.base import BaseCommand

from departures.gtfs_service import configured_selector, get_next_departures
from departures.schedule import Departures, OutOfService


class Command(BaseCommand):
    help = "Print the next scheduled departures for the configured route"

    def add_arguments(self, parser):
        parser.add_argument("--route", help="Route id (defaults to TRANSIT_ROUTE_ID)")
        parser.add_argument("--direction", help="Direction id, or 'any' for every direction (defaults to TRANSIT_DIRECTION_ID)")
        parser.add_argument("--stop", help="Stop id, used by the stop_times schedule source")
        parser.add_argument("--refresh", action="store_true", help="Download the feed even if the cached copy is fresh")

    def handle(self, *args, **options):
        selector = configured_selector(
            route_id=options["route"],
            direction_id=options["direction"],
            stop_id=options["stop"],
        )
        result, instant, snapshot = get_next_departures(selector=selector, refresh=options["refresh"])

        hh, rem = divmod(instant.seconds, 3600)
        self.stdout.write("=" * 48)
        self.stdout.write(f"  Route {selector.route_id}"
                          + (f"  direction {selector.direction_id}" if selector.direction_id else "")
                          + (f"  stop {selector.stop_id}" if selector.stop_id else ""))
        self.stdout.write(f"  {instant.date.isoformat()} {instant.weekday.name.title()}  "
                          f"{hh:02d}:{rem // 60:02d}:{rem % 60:02d}")
        if snapshot is not None:
            self.stdout.write(f"  Feed snapshot v{snapshot.version}")
        self.stdout.write("=" * 48)

        if isinstance(result, Departures):
            for i, label in enumerate(result.labels(2), 1):
                self.stdout.write(f"  [{i}]  {label}")
            self.stdout.write(self.style.SUCCESS(f"{len(result.departures)} departure(s) found."))
        elif isinstance(result, OutOfService):
            self.stdout.write(self.style.WARNING(f"Out of service: {result.reason}"))
        else:
            self.stdout.write(self.style.ERROR(f"Data unavailable: {result.reason}"))
