import json

from asgiref.sync import sync_to_async
from django.apps import apps
from django.http import JsonResponse, StreamingHttpResponse
from django.utils.http import content_disposition_header
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_GET, require_POST

from downloads.adapters import sse_event
from downloads.jobs import STATUS_DONE
from downloads.service.errors import DownloadError, InvalidRequest, ToolNotFound
from downloads.service.info import fetch_info
from downloads.service.tool import get_cached_tool, resolve_tool


def _config():
    return apps.get_app_config('downloads')


def get_registry():
    return _config().registry


def get_push_adapter():
    return _config().push_adapter


def get_pull_adapter():
    return _config().pull_adapter


def _error_response(error, message, status=None):
    """JSON error body for a DownloadError."""
    if status is None:
        if isinstance(error, InvalidRequest):
            status = 400
        elif isinstance(error, ToolNotFound):
            status = 503
        else:
            status = 500
    return JsonResponse(
        {'error': message, 'details': str(error), 'kind': error.kind}, status=status
    )


def _job_params(data):
    return data.get('url'), data.get('choice') or None, data.get('format_id') or None


async def _resolve_tool():
    return await sync_to_async(resolve_tool, thread_sensitive=False)()


@require_GET
async def info_view(request):
    """
    Normalized metadata for a URL (title, uploader, thumbnail, formats).
    """
    url = request.GET.get('url')
    if not url:
        return JsonResponse({'error': 'Missing url'}, status=400)

    try:
        tool = await _resolve_tool()
        info = await fetch_info(tool, url)
    except DownloadError as e:
        return _error_response(e, 'Failed to fetch info')

    return JsonResponse(info)


@require_GET
async def download_view(request):
    """
    Download synchronously and send the whole file as an attachment.

    The connection is held until yt-dlp finishes. The file and its job are
    deleted once the response body has been sent.
    """
    url, choice, format_id = _job_params(request.GET)
    if not url:
        return JsonResponse({'error': 'Missing url'}, status=400)

    adapter = get_pull_adapter()
    try:
        job_id, snapshot = await adapter.download(url, choice, format_id)
    except DownloadError as e:
        return _error_response(e, 'Download failed')

    if snapshot['status'] != STATUS_DONE:
        return JsonResponse(
            {
                'error': 'Download failed',
                'details': snapshot['error'],
                'kind': snapshot['error_kind'],
            },
            status=500,
        )

    file_path = adapter.open_artifact(job_id)
    if file_path is None:
        await adapter.discard(job_id)
        return JsonResponse({'error': 'Download finished but file not found'}, status=500)

    response = StreamingHttpResponse(
        adapter.stream_artifact(job_id, file_path), content_type='application/octet-stream'
    )
    response['Content-Disposition'] = content_disposition_header(True, file_path.name)
    response['Content-Length'] = str(file_path.stat().st_size)
    response['X-Content-Type-Options'] = 'nosniff'
    response['Cache-Control'] = 'no-store'
    return response


@require_GET
async def progress_view(request):
    """
    SSE endpoint that runs a job and streams its progress.

    Events: progress {id, percent}, done {id, filename}, fail {error}.
    Closing the connection cancels the job.
    """
    url, choice, format_id = _job_params(request.GET)

    if not url:

        async def missing_url():
            yield sse_event('fail', {'error': 'Missing url'})

        response = StreamingHttpResponse(
            missing_url(), status=400, content_type='text/event-stream'
        )
        response['Cache-Control'] = 'no-cache'
        return response

    adapter = get_push_adapter()
    job = await adapter.create_job(url, choice, format_id)

    response = StreamingHttpResponse(
        adapter.events(job), content_type='text/event-stream; charset=utf-8'
    )
    response['Cache-Control'] = 'no-cache, no-transform'
    response['X-Accel-Buffering'] = 'no'
    return response


@require_GET
async def file_view(request):
    """Send a finished job's file once, then delete it and forget the job."""
    job_id = request.GET.get('id')
    adapter = get_pull_adapter()
    file_path = adapter.open_artifact(job_id)
    if file_path is None:
        return JsonResponse({'error': 'Not ready'}, status=404)

    response = StreamingHttpResponse(
        adapter.stream_artifact(job_id, file_path), content_type='application/octet-stream'
    )
    response['Content-Disposition'] = content_disposition_header(True, file_path.name)
    response['Content-Length'] = str(file_path.stat().st_size)
    response['Cache-Control'] = 'no-store'
    return response


@csrf_exempt
@require_POST
async def start_view(request):
    """
    Start a background job and return its id without holding the connection.

    Accepts a JSON body or form data with url, choice and format_id.
    """
    if request.content_type == 'application/json':
        try:
            data = json.loads(request.body or b'{}')
        except json.JSONDecodeError:
            return JsonResponse({'error': 'Invalid JSON body'}, status=400)
        if not isinstance(data, dict):
            return JsonResponse({'error': 'Invalid JSON body'}, status=400)
    else:
        data = request.POST

    url, choice, format_id = _job_params(data)
    if not url:
        return JsonResponse({'error': 'Missing url'}, status=400)

    try:
        job_id = await get_pull_adapter().start(url, choice, format_id)
    except DownloadError as e:
        return _error_response(e, 'Could not start download')

    return JsonResponse({'id': job_id})


@require_GET
async def status_view(request):
    """Latest snapshot of a job: percent, status, error, filename, cmd."""
    snapshot = get_pull_adapter().status(request.GET.get('id'))
    if snapshot is None:
        return JsonResponse({'error': 'Not found'}, status=404)
    return JsonResponse(snapshot)


@require_GET
async def health_view(request):
    """Service health: yt-dlp resolution and number of tracked jobs."""
    tool = get_cached_tool()
    if tool is None:
        try:
            tool = await _resolve_tool()
        except ToolNotFound as e:
            return JsonResponse(
                {
                    'status': 'degraded',
                    'tool': None,
                    'version': None,
                    'error': str(e),
                    'jobs': len(get_registry()),
                },
                status=503,
            )

    return JsonResponse(
        {
            'status': 'ok',
            'tool': tool.cmd,
            'version': tool.version,
            'jobs': len(get_registry()),
        }
    )
