"""
Shared test fixtures: a fake yt-dlp invocation and a temp work dir mixin.
"""

import shutil
import sys
import tempfile
from pathlib import Path

from django.test import override_settings

from downloads.service import tool as tool_module
from downloads.service.tool import ToolInvocation, reset_tool_cache

FAKE_YTDLP = Path(__file__).with_name('fake_ytdlp.py')

FAKE_TOOL = ToolInvocation(sys.executable, [str(FAKE_YTDLP)], '2099.01.01')


def scenario_url(name):
    return f'https://example.com/watch/{name}'


class WorkDirMixin:
    """Point EZSAVE_WORK_DIR at a fresh temp dir and install the fake tool."""

    def setUp(self):
        super().setUp()
        self.work_dir = Path(tempfile.mkdtemp(prefix='ezsave-test-'))
        self._settings = override_settings(EZSAVE_WORK_DIR=str(self.work_dir))
        self._settings.enable()
        reset_tool_cache()
        tool_module._cached_tool = FAKE_TOOL

    def tearDown(self):
        reset_tool_cache()
        self._settings.disable()
        shutil.rmtree(self.work_dir, ignore_errors=True)
        super().tearDown()
