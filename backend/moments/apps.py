"""
Moments App Configuration
"""
from django.apps import AppConfig, apps
from django.conf import settings


class MomentsConfig(AppConfig):
    name = 'moments'
    verbose_name = 'Moments'

    def ready(self):
        # The feed's only state lives here, one instance per process
        from .models import MAX_MOMENTS, MAX_REPLIES
        from .store import FeedStore

        self.store = FeedStore(
            max_moments=getattr(settings, 'MOMENTS_MAX_MOMENTS', MAX_MOMENTS),
            max_replies=getattr(settings, 'MOMENTS_MAX_REPLIES', MAX_REPLIES),
        )


def get_store():
    """The process-wide FeedStore built in MomentsConfig.ready()."""
    return apps.get_app_config('moments').store
