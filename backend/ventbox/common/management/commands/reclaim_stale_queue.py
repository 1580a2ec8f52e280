# ventbox/common/management/commands/reclaim_stale_queue.py
import time

from django.conf import settings
from django.core.management.base import BaseCommand, CommandError
from django.db import DatabaseError

from ventbox.queues.admission import reclaim_stale


class Command(BaseCommand):
    help = "Delete WAITING queue entries older than the stale TTL"

    def add_arguments(self, parser):
        parser.add_argument(
            "--ttl",
            type=int,
            default=None,
            help="max age of a waiting entry in seconds (default QUEUE_STALE_TTL_SECONDS)",
        )
        parser.add_argument(
            "--every",
            type=int,
            default=0,
            help="repeat every N seconds (0 = run once)",
        )

    def handle(self, *args, **options):
        ttl = options["ttl"]
        if ttl is None:
            ttl = int(getattr(settings, "QUEUE_STALE_TTL_SECONDS", 600))
        if ttl <= 0:
            raise CommandError("--ttl must be positive")

        every = options["every"]
        if every < 0:
            raise CommandError("--every must not be negative")

        while True:
            try:
                deleted = reclaim_stale(ttl)
            except DatabaseError as exc:
                if not every:
                    raise CommandError(f"reclaim failed: {exc}")
                self.stderr.write(f"reclaim failed: {exc}")
            else:
                self.stdout.write(f"reclaimed {deleted} stale queue entries (ttl={ttl}s)")

            if not every:
                return
            time.sleep(every)
