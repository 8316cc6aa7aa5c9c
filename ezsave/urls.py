"""
URL configuration for the ezsave project.

Only the JSON/SSE API is routed here; the presentation layer is served
separately and talks to these endpoints.
"""

from django.urls import path

from downloads.views import (
    download_view,
    file_view,
    health_view,
    info_view,
    progress_view,
    start_view,
    status_view,
)

urlpatterns = [
    path('api/info', info_view, name='info'),
    path('api/download', download_view, name='download'),
    path('api/progress', progress_view, name='progress'),
    path('api/file', file_view, name='file'),
    path('api/start', start_view, name='start'),
    path('api/status', status_view, name='status'),
    path('api/health', health_view, name='health'),
]
