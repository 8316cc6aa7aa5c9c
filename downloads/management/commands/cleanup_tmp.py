"""
Management command to clean up abandoned job working directories.

Finds and removes tmp-{id} directories under EZSAVE_WORK_DIR that were left
behind when the server process died mid-job. A running server cleans up its
own jobs; this is for what a crash leaves on disk.
"""

import shutil
from datetime import timedelta

from django.core.management.base import BaseCommand
from django.utils import timezone

from downloads.service.config import get_work_dir
from downloads.service.constants import JOB_LOG_NAME, WORK_DIR_PREFIX


def find_abandoned_dirs(work_dir, max_age, now=None):
    """
    List tmp-* directories older than max_age.

    Args:
        work_dir: Base working directory
        max_age: timedelta
        now: Current time (default: timezone.now())

    Returns:
        list of dicts with 'path', 'id', 'age' and 'size'
    """
    now = now or timezone.now()
    found = []
    for tmp_dir in sorted(work_dir.glob(f'{WORK_DIR_PREFIX}*')):
        if not tmp_dir.is_dir():
            continue
        mtime = timezone.datetime.fromtimestamp(
            tmp_dir.stat().st_mtime, tz=timezone.get_current_timezone()
        )
        dir_age = now - mtime
        if dir_age <= max_age:
            continue
        found.append(
            {
                'path': tmp_dir,
                'id': tmp_dir.name[len(WORK_DIR_PREFIX):],
                'age': dir_age,
                'size': sum(f.stat().st_size for f in tmp_dir.rglob('*') if f.is_file()),
            }
        )
    return found


class Command(BaseCommand):
    help = 'Clean up abandoned tmp-{id} job directories left by a crashed server'

    def add_arguments(self, parser):
        parser.add_argument(
            '--dry-run',
            action='store_true',
            help='Show what would be deleted without actually deleting',
        )
        parser.add_argument(
            '--max-age',
            type=int,
            default=60,
            help='Maximum age in minutes before considering a directory abandoned (default: 60)',
        )

    def handle(self, *args, **options):
        dry_run = options['dry_run']
        max_age_minutes = options['max_age']

        work_dir = get_work_dir()
        abandoned = find_abandoned_dirs(work_dir, timedelta(minutes=max_age_minutes))

        if not abandoned:
            self.stdout.write(
                self.style.SUCCESS(
                    f'No tmp directories older than {max_age_minutes} minutes in {work_dir}'
                )
            )
            return

        plural = 'ies' if len(abandoned) != 1 else 'y'
        self.stdout.write(f'\nFound {len(abandoned)} abandoned tmp director{plural}:')
        self.stdout.write(f"{'=' * 80}")

        total_size = 0
        for info in abandoned:
            total_size += info['size']
            age_str = str(info['age']).split('.')[0]
            self.stdout.write(
                f"\n{info['path'].name:40} | Age: {age_str:15} | "
                f"Size: {info['size'] / (1024 * 1024):6.1f} MB"
            )

            log_file = info['path'] / JOB_LOG_NAME
            if log_file.exists():
                lines = log_file.read_text(errors='replace').splitlines()
                if lines and lines[-1].strip():
                    self.stdout.write(f'        Last log: {lines[-1].strip()[:60]}')

        self.stdout.write(f"\n{'=' * 80}")
        self.stdout.write(f'Total size: {total_size / (1024 * 1024):.1f} MB\n')

        if dry_run:
            self.stdout.write(
                self.style.WARNING(f'\nDRY RUN: Would delete {len(abandoned)} director{plural}')
            )
            self.stdout.write('Run without --dry-run to actually delete')
            return

        deleted_count = 0
        for info in abandoned:
            try:
                shutil.rmtree(info['path'])
            except OSError as e:
                self.stdout.write(self.style.ERROR(f"✗ Failed to delete {info['path'].name}: {e}"))
                continue
            self.stdout.write(self.style.SUCCESS(f"✓ Deleted: {info['path'].name}"))
            deleted_count += 1

        self.stdout.write(
            self.style.SUCCESS(f'\n✓ Deleted {deleted_count} of {len(abandoned)} tmp director{plural}')
        )
