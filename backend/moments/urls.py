"""
Moments App URL Configuration

No trailing slashes: the web client calls /api/moments, /api/replies/<id>.
"""
from django.urls import path
from .views import (
    MomentListCreateView,
    MomentDetailView,
    ReplyCreateView,
    ReplyDetailView,
    PingView
)

urlpatterns = [
    # Moments
    path('moments', MomentListCreateView.as_view(), name='moment-list'),
    path('moments/<str:moment_id>', MomentDetailView.as_view(), name='moment-detail'),

    # Replies
    path('replies', ReplyCreateView.as_view(), name='reply-create'),
    path('replies/<str:reply_id>', ReplyDetailView.as_view(), name='reply-detail'),

    # Connection check
    path('ping', PingView.as_view(), name='ping'),
]
