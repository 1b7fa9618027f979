"""
Feed exceptions and the DRF exception handler.

The store raises ValidationError / NotFoundError; the handler turns them
(and everything else) into the `{"error": ...}` bodies clients expect.
"""
from rest_framework.views import exception_handler
from rest_framework.response import Response
from rest_framework import status
import logging

logger = logging.getLogger(__name__)


class FeedError(Exception):
    """Base class for store errors."""


class ValidationError(FeedError):
    """Bad or missing input: empty/too long text, missing author or moment id."""


class NotFoundError(FeedError):
    """
    Referenced moment/reply is absent, OR present but owned by someone else.

    Both cases raise the same error so non-owners cannot probe for existence.
    """


def _first_message(detail):
    """Pull a readable message out of a (possibly nested) DRF error detail."""
    if isinstance(detail, dict):
        for key, value in detail.items():
            message = _first_message(value)
            if message:
                return message if key in ('detail', 'non_field_errors') else f"{key}: {message}"
        return None
    if isinstance(detail, (list, tuple)):
        for item in detail:
            message = _first_message(item)
            if message:
                return message
        return None
    return str(detail)


def custom_exception_handler(exc, context):
    """
    Custom exception handler that:
    1. Maps feed errors to 400 / 404
    2. Gives DRF's own errors the same {"error"} shape
    3. Logs and hides anything unexpected behind a generic 500
    """
    if isinstance(exc, ValidationError):
        return Response({'error': str(exc)}, status=status.HTTP_400_BAD_REQUEST)

    if isinstance(exc, NotFoundError):
        return Response({'error': str(exc)}, status=status.HTTP_404_NOT_FOUND)

    response = exception_handler(exc, context)

    if response is not None:
        if not isinstance(response.data, dict) or 'error' not in response.data:
            response.data = {
                'error': _first_message(response.data) or str(exc),
                'details': response.data
            }
        return response

    view = context.get('view')
    logger.exception(
        "Unhandled exception in %s: %s",
        type(view).__name__ if view is not None else 'unknown view',
        exc
    )

    return Response(
        {'error': 'Internal server error'},
        status=status.HTTP_500_INTERNAL_SERVER_ERROR
    )
