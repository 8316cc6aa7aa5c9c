"""
ASGI entry point for ezsave.

Progress streaming relies on async views and client-disconnect handling, which
Django only provides under ASGI. Run with `python manage.py serve` or any ASGI
server pointed at `ezsave.asgi:application`.
"""

import os

from django.core.asgi import get_asgi_application

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'ezsave.settings')

application = get_asgi_application()
