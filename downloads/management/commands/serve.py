"""
Run the ezsave ASGI application under uvicorn.

Progress streaming needs ASGI (async views and disconnect handling), so this
replaces `runserver` for anything beyond quick checks.
"""

import uvicorn
from django.conf import settings
from django.core.management.base import BaseCommand


class Command(BaseCommand):
    help = 'Serve the download API over ASGI with uvicorn'

    def add_arguments(self, parser):
        parser.add_argument(
            '--host', type=str, default=None, help='Bind address (default: EZSAVE_HOST)'
        )
        parser.add_argument(
            '--port', type=int, default=None, help='Port (default: EZSAVE_PORT)'
        )
        parser.add_argument('--reload', action='store_true', help='Reload on code changes')

    def handle(self, *args, **options):
        host = options['host'] or settings.EZSAVE_HOST
        port = options['port'] or settings.EZSAVE_PORT

        self.stdout.write(f'EZ Save server running at http://{host}:{port}')
        uvicorn.run(
            'ezsave.asgi:application',
            host=host,
            port=port,
            reload=options['reload'],
            timeout_keep_alive=settings.EZSAVE_KEEP_ALIVE_SECONDS,
        )
