"""
DRF Views
=========

API endpoints for the moment feed.

IDENTITY NOTE:
--------------
There is no authentication. Clients generate an anonymous id once per
device and send it with every write; whoever presents the id that created
a moment/reply may delete it. That id is a bearer credential and nothing
more.

Views stay thin: pick fields out of the request, call the store, serialize
the result. Store errors propagate to moments.exceptions.custom_exception_handler.
"""

from rest_framework import permissions, status
from rest_framework.views import APIView
from rest_framework.response import Response

from .apps import get_store
from .serializers import (
    MomentSerializer,
    MomentCreateSerializer,
    ReplySerializer,
    ReplyCreateSerializer,
)


def _requester_id(request):
    """anonymousId from the JSON body, else from the query string."""
    author_id = None
    if hasattr(request.data, 'get'):
        author_id = request.data.get('anonymousId')
    if not author_id:
        author_id = request.query_params.get('anonymousId')
    return author_id


class MomentListCreateView(APIView):
    """
    GET /api/moments

    Every moment, newest first, with replies (oldest first) and replyCount.

    POST /api/moments

    Body:
    {
        "text": "Hello",            // 1-280 chars after trimming
        "image": "data:image/...",  // optional
        "anonymousId": "abc123",
        "displayName": "Blue Fox"   // optional, defaults to "Anonymous User"
    }
    """
    permission_classes = [permissions.AllowAny]

    def get(self, request):
        moments = get_store().moments.list()
        return Response(MomentSerializer(moments, many=True).data)

    def post(self, request):
        serializer = MomentCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        moment = get_store().moments.create(
            text=data.get('text'),
            author_id=data.get('anonymousId'),
            image=data.get('image'),
            display_name=data.get('displayName'),
        )
        return Response(MomentSerializer(moment).data, status=status.HTTP_201_CREATED)


class MomentDetailView(APIView):
    """
    DELETE /api/moments/<id>

    Body: { "anonymousId": "abc123" }

    Removes the moment and all of its replies. 404 both when the moment
    does not exist and when it belongs to someone else.
    """
    permission_classes = [permissions.AllowAny]

    def delete(self, request, moment_id):
        moment = get_store().moments.delete(moment_id, _requester_id(request))
        return Response(MomentSerializer(moment).data)


class ReplyCreateView(APIView):
    """
    POST /api/replies

    Body:
    {
        "text": "Nice",
        "anonymousId": "def456",
        "displayName": "Red Owl",
        "momentId": "<moment id>"
    }
    """
    permission_classes = [permissions.AllowAny]

    def post(self, request):
        serializer = ReplyCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        reply = get_store().replies.create(
            text=data.get('text'),
            author_id=data.get('anonymousId'),
            moment_id=data.get('momentId'),
            display_name=data.get('displayName'),
        )
        return Response(ReplySerializer(reply).data, status=status.HTTP_201_CREATED)


class ReplyDetailView(APIView):
    """
    DELETE /api/replies/<id>

    Body: { "anonymousId": "def456" }
    """
    permission_classes = [permissions.AllowAny]

    def delete(self, request, reply_id):
        reply = get_store().replies.delete(reply_id, _requester_id(request))
        return Response(ReplySerializer(reply).data)


class PingView(APIView):
    """
    GET /api/ping

    Liveness check the client polls to show its connection status.
    """
    permission_classes = [permissions.AllowAny]

    def get(self, request):
        return Response({'message': 'Hello from MomentFeed API server'})
