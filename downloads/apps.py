from django.apps import AppConfig


class DownloadsConfig(AppConfig):
    name = 'downloads'
    default_auto_field = 'django.db.models.BigAutoField'

    def ready(self):
        """Create the process-wide job registry and the adapters sharing it"""
        from downloads.adapters import PullAdapter, PushAdapter
        from downloads.jobs import JobRegistry

        self.registry = JobRegistry()
        self.push_adapter = PushAdapter(self.registry)
        self.pull_adapter = PullAdapter(self.registry)
