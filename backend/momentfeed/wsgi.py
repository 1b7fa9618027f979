"""
WSGI config for momentfeed project.

Run with a single worker process: the feed lives in that process's memory.
"""
import os
from django.core.wsgi import get_wsgi_application

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'momentfeed.settings')
application = get_wsgi_application()
