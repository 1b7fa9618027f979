"""
DRF Serializers
===============

Serializers handle:
1. Shape of incoming JSON (field names, optional fields)
2. Transformation of store dataclasses to the wire format

DESIGN DECISIONS:
-----------------
1. Text/author rules live in the store, not here, so direct store callers
   get the same checks. Input serializers only pick fields out of the body.
2. Wire names are camelCase (anonymousId, displayName, momentId) because
   that is what the polling web client sends and reads.
3. `timestamp` (epoch ms) is what the client sorts and formats on;
   `createdAt` carries the same instant as ISO-8601.
"""

from rest_framework import serializers


class _LenientCharField(serializers.CharField):
    """
    CharField that lets blank/missing and non-string values through to the
    store untouched.

    The store decides what counts as "required" and words the error. No
    coercion here: a JSON number must not become an owner id on create and
    then fail the same check on delete.
    """

    def __init__(self, **kwargs):
        kwargs.setdefault('required', False)
        kwargs.setdefault('allow_blank', True)
        kwargs.setdefault('allow_null', True)
        kwargs.setdefault('trim_whitespace', False)
        super().__init__(**kwargs)

    def to_internal_value(self, data):
        return data


class MomentCreateSerializer(serializers.Serializer):
    """POST /api/moments body."""
    text = _LenientCharField()
    image = _LenientCharField()
    anonymousId = _LenientCharField()
    displayName = _LenientCharField()


class ReplyCreateSerializer(serializers.Serializer):
    """POST /api/replies body."""
    text = _LenientCharField()
    anonymousId = _LenientCharField()
    displayName = _LenientCharField()
    momentId = _LenientCharField()


class ReplySerializer(serializers.Serializer):
    id = serializers.CharField(read_only=True)
    text = serializers.CharField(read_only=True)
    anonymousId = serializers.CharField(source='author_id', read_only=True)
    displayName = serializers.CharField(source='display_name', read_only=True)
    momentId = serializers.CharField(source='moment_id', read_only=True)
    timestamp = serializers.IntegerField(read_only=True)
    createdAt = serializers.DateTimeField(source='created_at', read_only=True)


class MomentSerializer(serializers.Serializer):
    """
    A moment with its replies joined in.

    Pass the copies from MomentStore.list(); a freshly created or deleted
    moment serializes with `replies: []` and `replyCount: 0`.
    """
    id = serializers.CharField(read_only=True)
    text = serializers.CharField(read_only=True)
    image = serializers.CharField(read_only=True, allow_null=True)
    anonymousId = serializers.CharField(source='author_id', read_only=True)
    displayName = serializers.CharField(source='display_name', read_only=True)
    timestamp = serializers.IntegerField(read_only=True)
    createdAt = serializers.DateTimeField(source='created_at', read_only=True)
    replies = ReplySerializer(many=True, read_only=True)
    replyCount = serializers.IntegerField(source='reply_count', read_only=True)

    def to_representation(self, instance):
        data = super().to_representation(instance)
        # Absent image is left out entirely, like the client's optional field
        if data.get('image') is None:
            data.pop('image', None)
        return data
