"""
Tests for the push (SSE) and pull (polling) delivery adapters.
"""

import asyncio
import json
import shutil
import tempfile
from pathlib import Path
from unittest.mock import patch

from django.test import SimpleTestCase

from downloads.adapters import (
    SSE_HEARTBEAT,
    PullAdapter,
    PushAdapter,
    sse_event,
)
from downloads.jobs import STATUS_DONE, STATUS_FAILED, JobRegistry
from downloads.service.errors import InvalidRequest, ToolNotFound
from downloads.tests.support import FAKE_TOOL, scenario_url


def parse_frames(frames):
    """Turn SSE frames into (event, data) pairs, skipping comments and hints."""
    parsed = []
    for frame in frames:
        if not frame.startswith('event: '):
            continue
        event_line, data_line = frame.strip().split('\n')
        parsed.append((event_line[len('event: '):], json.loads(data_line[len('data: '):])))
    return parsed


class AdapterTestBase(SimpleTestCase):
    def setUp(self):
        self.tmpdir = Path(tempfile.mkdtemp())
        self.registry = JobRegistry(work_dir=self.tmpdir, reap_after=3600)

    def tearDown(self):
        shutil.rmtree(self.tmpdir, ignore_errors=True)


class SseEventTest(SimpleTestCase):
    def test_format(self):
        self.assertEqual(
            sse_event('progress', {'id': 'a', 'percent': 5.0}),
            'event: progress\ndata: {"id": "a", "percent": 5.0}\n\n',
        )


class PushAdapterTest(AdapterTestBase):
    def setUp(self):
        super().setUp()
        self.adapter = PushAdapter(self.registry, heartbeat_interval=10, retry_ms=5000)

    async def collect(self, job):
        return [frame async for frame in self.adapter.events(job, tool=FAKE_TOOL)]

    async def test_done_stream(self):
        """Test the frame sequence of a successful job"""
        job = await self.adapter.create_job(scenario_url('ok'), 'best')

        frames = await self.collect(job)

        self.assertEqual(frames[0], 'retry: 5000\n')
        self.assertTrue(frames[1].startswith(':'))
        events = parse_frames(frames)
        self.assertEqual(events[0], ('progress', {'id': job.id, 'percent': 0}))
        self.assertEqual(events[-1], ('done', {'id': job.id, 'filename': f'ezsave-{job.id}.mp4'}))
        percents = [data['percent'] for name, data in events if name == 'progress']
        self.assertEqual(percents, sorted(percents))
        self.assertEqual(sum(1 for name, _ in events if name in ('done', 'fail')), 1)

        # Done jobs stay for retrieval
        self.assertEqual(self.registry.snapshot(job.id)['status'], STATUS_DONE)

    async def test_fail_stream_discards_job(self):
        """Test that a failed job ends with one fail frame and is removed"""
        job = await self.adapter.create_job(scenario_url('fail'))

        events = parse_frames(await self.collect(job))

        name, data = events[-1]
        self.assertEqual(name, 'fail')
        self.assertIn('Unsupported URL', data['error'])
        self.assertNotIn(job.id, self.registry)
        self.assertFalse(job.working_directory.exists())

    async def test_artifact_missing_stream(self):
        job = await self.adapter.create_job(scenario_url('nofile'))
        events = parse_frames(await self.collect(job))
        self.assertEqual(events[-1], ('fail', {'error': 'Download finished but file not found'}))

    @patch('downloads.runner.resolve_tool', side_effect=ToolNotFound())
    async def test_tool_not_found_stream(self, mock_resolve):
        job = await self.adapter.create_job(scenario_url('ok'))

        events = parse_frames([frame async for frame in self.adapter.events(job)])

        self.assertEqual(events[-1][0], 'fail')
        self.assertIn('yt-dlp not found', events[-1][1]['error'])

    async def test_heartbeat(self):
        """Test that keepalive comments are sent while waiting"""
        adapter = PushAdapter(self.registry, heartbeat_interval=0.05, retry_ms=1000)
        job = await adapter.create_job(scenario_url('slow'))
        frames = []

        stream = adapter.events(job, tool=FAKE_TOOL)
        try:
            async for frame in stream:
                frames.append(frame)
                if frames.count(SSE_HEARTBEAT) >= 2:
                    break
        finally:
            await stream.aclose()

        self.assertGreaterEqual(frames.count(SSE_HEARTBEAT), 2)
        self.assertNotIn(job.id, self.registry)

    async def test_heartbeat_while_busy(self):
        """Test that keepalives keep their schedule while progress keeps flowing"""
        adapter = PushAdapter(self.registry, heartbeat_interval=0.1, retry_ms=1000)
        job = await adapter.create_job(scenario_url('steady'))

        frames = [frame async for frame in adapter.events(job, tool=FAKE_TOOL)]

        self.assertGreaterEqual(frames.count(SSE_HEARTBEAT), 2)
        first_heartbeat = frames.index(SSE_HEARTBEAT)
        later_progress = [f for f in frames[first_heartbeat:] if f.startswith('event: progress')]
        self.assertTrue(later_progress)
        self.assertTrue(frames[-1].startswith('event: done'))

    async def test_disconnect_cancels_job(self):
        """Test that cancelling the consumer kills yt-dlp and removes the job"""
        job = await self.adapter.create_job(scenario_url('slow'))
        seen_progress = asyncio.Event()

        async def consume():
            async for frame in self.adapter.events(job, tool=FAKE_TOOL):
                if '"percent": 5.0' in frame:
                    seen_progress.set()

        task = asyncio.create_task(consume())
        await asyncio.wait_for(seen_progress.wait(), timeout=30)
        handle = job.process

        task.cancel()
        with self.assertRaises(asyncio.CancelledError):
            await task

        self.assertTrue(handle.killed)
        self.assertIsNotNone(handle.returncode)
        self.assertNotIn(job.id, self.registry)
        self.assertFalse(job.working_directory.exists())

    async def test_missing_url(self):
        with self.assertRaises(InvalidRequest):
            await self.adapter.create_job('')


class PullAdapterTest(AdapterTestBase):
    def setUp(self):
        super().setUp()
        self.adapter = PullAdapter(self.registry)

    async def read_all(self, job_id, file_path):
        return b''.join([chunk async for chunk in self.adapter.stream_artifact(job_id, file_path)])

    @patch('downloads.adapters.resolve_tool', return_value=FAKE_TOOL)
    async def test_start_status_file(self, mock_resolve):
        """Test the background job lifecycle through to one-shot retrieval"""
        job_id = await self.adapter.start(scenario_url('ok'), 'best')

        snapshot = await self.adapter.wait(job_id)
        self.assertEqual(snapshot['status'], STATUS_DONE)
        self.assertEqual(self.adapter.status(job_id), snapshot)

        file_path = self.adapter.open_artifact(job_id)
        self.assertEqual(file_path.name, f'ezsave-{job_id}.mp4')

        self.assertEqual(await self.read_all(job_id, file_path), b'media')
        self.assertIsNone(self.adapter.status(job_id))
        self.assertFalse(file_path.exists())
        self.assertIsNone(self.adapter.open_artifact(job_id))

    @patch('downloads.adapters.resolve_tool', return_value=FAKE_TOOL)
    async def test_overlapping_retrievals(self, mock_resolve):
        """Test that a second retrieval during the first one gets nothing"""
        job_id = await self.adapter.start(scenario_url('ok'))
        await self.adapter.wait(job_id)

        first = self.adapter.open_artifact(job_id)
        second = self.adapter.open_artifact(job_id)

        self.assertIsNotNone(first)
        self.assertIsNone(second)
        self.assertEqual(await self.read_all(job_id, first), b'media')
        self.assertIsNone(self.adapter.open_artifact(job_id))

    @patch('downloads.adapters.resolve_tool', return_value=FAKE_TOOL)
    async def test_failed_job_status(self, mock_resolve):
        job_id = await self.adapter.start(scenario_url('fail'))

        snapshot = await self.adapter.wait(job_id)

        self.assertEqual(snapshot['status'], STATUS_FAILED)
        self.assertIsNone(self.adapter.open_artifact(job_id))
        # Failed polled jobs stay visible until reaped
        self.assertIn(job_id, self.registry)

    @patch('downloads.adapters.resolve_tool', side_effect=ToolNotFound())
    async def test_start_without_tool(self, mock_resolve):
        """Test that start surfaces ToolNotFound before creating a job"""
        with self.assertRaises(ToolNotFound):
            await self.adapter.start(scenario_url('ok'))
        self.assertEqual(len(self.registry), 0)

    async def test_start_without_url(self):
        with self.assertRaises(InvalidRequest):
            await self.adapter.start(None)

    def test_unknown_ids(self):
        self.assertIsNone(self.adapter.status('missing'))
        self.assertIsNone(self.adapter.status(None))
        self.assertIsNone(self.adapter.open_artifact('missing'))

    @patch('downloads.runner.resolve_tool', return_value=FAKE_TOOL)
    async def test_download_collect(self, mock_resolve):
        """Test the whole-file path keeps a done job until the file is sent"""
        job_id, snapshot = await self.adapter.download(scenario_url('audio'), 'audio-m4a')

        self.assertEqual(snapshot['status'], STATUS_DONE)
        file_path = self.adapter.open_artifact(job_id)
        self.assertEqual(await self.read_all(job_id, file_path), b'media')
        self.assertNotIn(job_id, self.registry)

    @patch('downloads.runner.resolve_tool', return_value=FAKE_TOOL)
    async def test_download_collect_failure(self, mock_resolve):
        job_id, snapshot = await self.adapter.download(scenario_url('fail'))

        self.assertEqual(snapshot['status'], STATUS_FAILED)
        self.assertEqual(snapshot['error_kind'], 'ProcessExitNonZero')
        self.assertNotIn(job_id, self.registry)
