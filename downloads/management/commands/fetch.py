"""
Django management command for fetching media.

Runs one download job in the foreground with the same job machinery the web
API uses, printing progress, and moves the finished file to --outdir.
"""

import asyncio
import json
import shutil
from pathlib import Path

from django.core.management.base import BaseCommand, CommandError

from downloads.jobs import STATUS_DONE, JobRegistry
from downloads.runner import run_job
from downloads.service.errors import ToolNotFound
from downloads.service.formats import CHOICES, build_command_args, output_template_for
from downloads.service.progress import ErrorEvent, ProgressEvent
from downloads.service.tool import resolve_tool


class Command(BaseCommand):
    help = 'Download media from a URL with yt-dlp, showing progress'

    def add_arguments(self, parser):
        parser.add_argument('url', type=str, help='URL of the media page')
        parser.add_argument(
            '--choice',
            type=str,
            default='best',
            choices=CHOICES,
            help='Quality or audio format (default: best)',
        )
        parser.add_argument(
            '--format-id', type=str, default=None, help='Explicit yt-dlp format id (overrides --choice)'
        )
        parser.add_argument(
            '--outdir', type=str, default='.', help='Output directory (default: current directory)'
        )
        parser.add_argument(
            '--dry-run',
            action='store_true',
            help='Show the yt-dlp command without downloading',
        )
        parser.add_argument('--verbose', action='store_true', help='Show yt-dlp error lines')
        parser.add_argument('--json', action='store_true', help='Output result as JSON')

    def handle(self, *args, **options):
        url = options['url']
        choice = options['choice']
        format_id = options['format_id']
        outdir = Path(options['outdir'])
        output_json = options['json']

        try:
            tool = resolve_tool(logger=self.stdout.write if options['verbose'] else None)
        except ToolNotFound as e:
            raise CommandError(str(e))

        if options['dry_run']:
            template = output_template_for(outdir, 'JOBID')
            argv = tool.argv(build_command_args(url, choice, format_id, template))
            if output_json:
                self.stdout.write(json.dumps({'cmd': argv}))
            else:
                self.stdout.write(self.style.WARNING('DRY RUN MODE - Nothing will be downloaded'))
                self.stdout.write(' '.join(argv))
            return

        registry = JobRegistry()
        job = registry.create(url, choice, format_id)
        try:
            snapshot = asyncio.run(self._run(registry, job, tool, options))

            if snapshot['status'] != STATUS_DONE:
                if output_json:
                    self.stdout.write(json.dumps({'success': False, **snapshot}))
                    return
                raise CommandError(f"{snapshot['error_kind']}: {snapshot['error']}")

            outdir.mkdir(parents=True, exist_ok=True)
            destination = outdir / snapshot['filename']
            shutil.move(str(registry.get(job.id).file_path), destination)
        finally:
            registry.remove(job.id)

        if output_json:
            self.stdout.write(json.dumps({'success': True, **snapshot, 'path': str(destination)}))
        else:
            self.stdout.write(self.style.SUCCESS(f'\n✓ Saved to {destination}'))

    async def _run(self, registry, job, tool, options):
        queue = asyncio.Queue()
        task = asyncio.create_task(run_job(registry, job.id, tool=tool, events=queue))

        while True:
            event = await queue.get()
            if event is None:
                break
            if options['json']:
                continue
            if isinstance(event, ProgressEvent):
                self.stdout.write(f'\r{event.percent:5.1f}%', ending='')
                self.stdout.flush()
            elif isinstance(event, ErrorEvent) and options['verbose']:
                self.stderr.write(f'\n{event.message}')

        await task
        return registry.snapshot(job.id)
