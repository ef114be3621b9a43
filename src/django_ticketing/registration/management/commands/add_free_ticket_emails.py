"""Management command to add emails to the free-ticket allowlist.

Usage::

    manage.py add_free_ticket_emails --reason "Speaker" alice@example.com bob@example.com
    manage.py add_free_ticket_emails --reason "Volunteer" --file volunteers.txt
"""

import argparse
from pathlib import Path

from django.core.management.base import BaseCommand, CommandError

from django_ticketing.registration.services.eligibility import add_free_ticket_emails


class Command(BaseCommand):
    """Bulk-add emails to the free-ticket allowlist."""

    help = "Add emails to the free-ticket allowlist; existing entries are skipped"

    def add_arguments(self, parser: argparse.ArgumentParser) -> None:
        """Register command-line arguments.

        Args:
            parser: The argument parser to add arguments to.
        """
        parser.add_argument("emails", nargs="*", help="Email addresses to add.")
        parser.add_argument("--file", type=Path, default=None, help="File with one email per line.")
        parser.add_argument("--reason", required=True, help="Why these attendees get a free ticket.")

    def handle(self, **options: object) -> None:
        """Add the emails and report how many were new."""
        emails = [str(e) for e in options["emails"]]
        path = options["file"]
        if isinstance(path, Path):
            try:
                emails.extend(line.strip() for line in path.read_text(encoding="utf-8").splitlines())
            except OSError as exc:
                msg = f"Could not read {path}: {exc}"
                raise CommandError(msg) from None
        emails = [e for e in emails if e]
        if not emails:
            msg = "No emails given"
            raise CommandError(msg)

        result = add_free_ticket_emails(emails, str(options["reason"]))
        self.stdout.write(
            self.style.SUCCESS(f"Added {result.added} of {result.total} email(s); {result.skipped} already listed")
        )
