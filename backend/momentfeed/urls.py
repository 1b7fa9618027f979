"""
MomentFeed URL Configuration
"""
from django.urls import path, include
from django.http import JsonResponse


def api_root(request):
    """Root endpoint with API information."""
    return JsonResponse({
        'message': 'MomentFeed API Server',
        'version': '1.0',
        'endpoints': {
            'moments': '/api/moments',
            'moment': '/api/moments/<id>',
            'replies': '/api/replies',
            'reply': '/api/replies/<id>',
            'ping': '/api/ping',
        },
    })


urlpatterns = [
    path('', api_root, name='api-root'),
    path('api/', include('moments.urls')),
]
