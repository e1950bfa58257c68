"""Management command to clean up old items from a recycle bin."""

import os
from datetime import timedelta
from typing import Any, Final

from django.core.management.base import BaseCommand, CommandError

from server.apps.filemanager.entities import InstanceConfig
from server.apps.filemanager.logic.trash_operations import (
    list_expired_items,
    purge_recycle_bin,
)

_RETENTION_DAYS: Final = 30


class Command(BaseCommand):
    """Permanently delete recycle bin items older than a retention period."""

    help = 'Clean up old items from an instance recycle bin (30+ days)'

    def add_arguments(self, parser: Any) -> None:
        """Add command line arguments.

        Args:
            parser: Argument parser.
        """
        parser.add_argument(
            '--root',
            required=True,
            help='Physical root directory of the instance',
        )
        parser.add_argument(
            '--instance-id',
            required=True,
            help='Identifier of the instance owning the recycle bin',
        )
        parser.add_argument(
            '--days',
            type=int,
            default=_RETENTION_DAYS,
            help=f'Retention period in days (default: {_RETENTION_DAYS})',
        )
        parser.add_argument(
            '--dry-run',
            action='store_true',
            help='Show what would be deleted without deleting',
        )

    def handle(self, *args: Any, **options: Any) -> None:
        """Execute the cleanup command.

        Args:
            args: Positional arguments (unused).
            options: Command options.

        Raises:
            CommandError: If the root does not exist or days is negative.
        """
        root = options['root']
        days = options['days']
        dry_run = options['dry_run']

        if not os.path.isdir(root):
            raise CommandError(f'Root directory does not exist: {root}')
        if days < 0:
            raise CommandError('--days cannot be negative')

        config = InstanceConfig.from_settings(options['instance_id'], root)

        self.stdout.write(
            f'Looking for recycle bin items older than {days} days',
        )

        older_than = timedelta(days=days)
        if dry_run:
            count = 0
            for path in list_expired_items(config, older_than):
                self.stdout.write(f'Would delete: {os.path.basename(path)}')
                count += 1
            self.stdout.write(
                self.style.SUCCESS(
                    f'Would purge {count} items from recycle bin',
                ),
            )
        else:
            failed = 0

            def report_failure(path: str, exc: OSError) -> None:
                nonlocal failed
                name = os.path.basename(path)
                self.stderr.write(f'Failed to delete {name}: {exc.strerror}')
                failed += 1

            count = purge_recycle_bin(
                config,
                older_than,
                on_error=report_failure,
            )
            self.stdout.write(
                self.style.SUCCESS(
                    f'Purged {count} items from recycle bin, {failed} failed',
                ),
            )
