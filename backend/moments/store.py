"""
In-Memory Moment & Reply Store
==============================

This module owns all feed state:
1. MomentStore - ordered moments, owner-only delete, retention bound
2. ReplyStore - ordered replies, owner-only delete, retention bound,
   cascade deletion when the parent moment goes away
3. FeedStore - creates both and holds the single lock they share

CONCURRENCY STRATEGY:
---------------------
Problem: Django may serve requests from several threads at once, and the
two stores reference each other (cascade, reply_count). Mutating them
under separate locks would let a reader see a moment whose replies are
half cascaded.

Solution: ONE re-entrant lock owned by FeedStore. Every public method on
either store takes it, so create + eviction and delete + cascade are each
a single indivisible unit. The lock is re-entrant because MomentStore.delete
calls ReplyStore.delete_by_moment while already holding it.

FAILURE ATOMICITY:
------------------
Every operation validates everything it needs BEFORE touching the
collections. A raised ValidationError / NotFoundError therefore leaves the
store exactly as it was.

ORDERING:
---------
Both collections are OrderedDicts in insertion order, and timestamps are
clamped to never go backwards, so insertion order IS created_at order:
- moments are listed by walking the dict in reverse (newest first)
- replies are listed in dict order (oldest first)
- eviction pops from the front (oldest first)
"""

import logging
import threading
import uuid
from collections import OrderedDict
from dataclasses import replace
from typing import Optional

from django.utils import timezone

from .exceptions import NotFoundError, ValidationError
from .models import (
    Moment,
    Reply,
    MAX_MOMENTS,
    MAX_REPLIES,
    MAX_TEXT_LENGTH,
    DEFAULT_DISPLAY_NAME,
)

logger = logging.getLogger(__name__)


# ============================================================================
# INPUT CLEANING
# ============================================================================

def clean_text(text) -> str:
    """Trim and bound-check moment/reply text. Returns the trimmed text."""
    if not isinstance(text, str) or not text.strip():
        raise ValidationError("Text is required")
    text = text.strip()
    if len(text) > MAX_TEXT_LENGTH:
        raise ValidationError(f"Text must be {MAX_TEXT_LENGTH} characters or less")
    return text


def clean_author_id(author_id) -> str:
    if not isinstance(author_id, str) or not author_id.strip():
        raise ValidationError("Anonymous ID is required")
    return author_id


def clean_image(image) -> Optional[str]:
    # Opaque data URI; only its type is checked
    if image is None or image == '':
        return None
    if not isinstance(image, str):
        raise ValidationError("Image must be a string")
    return image


def clean_display_name(display_name) -> str:
    # Cosmetic only - never consulted for authorization
    if isinstance(display_name, str) and display_name.strip():
        return display_name.strip()
    return DEFAULT_DISPLAY_NAME


def _new_id() -> str:
    return str(uuid.uuid4())


# ============================================================================
# MOMENTS
# ============================================================================

class MomentStore:
    """
    Ordered collection of moments.

    Holds at most `max_moments`; creating one more evicts the oldest, and
    the evicted moment's replies with it.
    """

    def __init__(self, feed: 'FeedStore', max_moments: int = MAX_MOMENTS):
        if max_moments < 1:
            raise ValueError("max_moments must be at least 1")
        self._feed = feed
        self._moments: 'OrderedDict[str, Moment]' = OrderedDict()
        self.max_moments = max_moments

    def __len__(self):
        with self._feed.lock:
            return len(self._moments)

    def __contains__(self, moment_id):
        with self._feed.lock:
            return moment_id in self._moments

    def get(self, moment_id: str) -> Optional[Moment]:
        with self._feed.lock:
            return self._moments.get(moment_id)

    def list(self) -> list[Moment]:
        """
        All moments, newest first, each decorated with its live replies.

        The join happens here, under the lock, so reply_count always equals
        the number of replies the reader sees. Replies are grouped in a
        single pass rather than filtered per moment.
        """
        with self._feed.lock:
            grouped = self._feed.replies.grouped()
            return [
                replace(moment, replies=tuple(grouped.get(moment.id, ())))
                for moment in reversed(self._moments.values())
            ]

    def create(
        self,
        text: str,
        author_id: str,
        image: Optional[str] = None,
        display_name: Optional[str] = None
    ) -> Moment:
        """
        Create a moment at the head of the feed.

        RAISES:
        - ValidationError: blank/too long text, missing author_id,
          non-string image
        """
        text = clean_text(text)
        author_id = clean_author_id(author_id)
        image = clean_image(image)

        with self._feed.lock:
            moment = Moment(
                id=_new_id(),
                text=text,
                author_id=author_id,
                display_name=clean_display_name(display_name),
                created_at=self._feed.now(),
                image=image,
            )
            self._moments[moment.id] = moment
            logger.debug("Created moment %s by %s", moment.id, author_id)

            self._enforce_retention()
            return moment

    def delete(self, moment_id: str, author_id: str) -> Moment:
        """
        Delete a moment owned by `author_id`, cascading to its replies.

        Unknown id and someone-else's moment are indistinguishable to the
        caller: both raise NotFoundError.
        """
        author_id = clean_author_id(author_id)

        with self._feed.lock:
            moment = self._moments.get(moment_id)
            if moment is None or moment.author_id != author_id:
                raise NotFoundError("Moment not found or unauthorized")

            del self._moments[moment_id]
            removed = self._feed.replies.delete_by_moment(moment_id)
            logger.info(
                "Deleted moment %s (cascaded %d replies)", moment_id, removed
            )
            return moment

    def _enforce_retention(self):
        # Caller holds the lock
        while len(self._moments) > self.max_moments:
            evicted_id, _ = self._moments.popitem(last=False)
            removed = self._feed.replies.delete_by_moment(evicted_id)
            logger.info(
                "Evicted moment %s over retention bound %d (cascaded %d replies)",
                evicted_id, self.max_moments, removed
            )


# ============================================================================
# REPLIES
# ============================================================================

class ReplyStore:
    """
    Ordered collection of replies across all moments.

    The retention bound is global, not per moment: the oldest reply in the
    whole feed is evicted first.
    """

    def __init__(self, feed: 'FeedStore', max_replies: int = MAX_REPLIES):
        if max_replies < 1:
            raise ValueError("max_replies must be at least 1")
        self._feed = feed
        self._replies: 'OrderedDict[str, Reply]' = OrderedDict()
        self.max_replies = max_replies

    def __len__(self):
        with self._feed.lock:
            return len(self._replies)

    def __contains__(self, reply_id):
        with self._feed.lock:
            return reply_id in self._replies

    def get(self, reply_id: str) -> Optional[Reply]:
        with self._feed.lock:
            return self._replies.get(reply_id)

    def for_moment(self, moment_id: str) -> list[Reply]:
        """Replies to one moment, oldest first."""
        with self._feed.lock:
            return [r for r in self._replies.values() if r.moment_id == moment_id]

    def grouped(self) -> dict[str, list[Reply]]:
        """{moment_id -> replies oldest first} in one pass."""
        with self._feed.lock:
            groups: dict[str, list[Reply]] = {}
            for reply in self._replies.values():
                groups.setdefault(reply.moment_id, []).append(reply)
            return groups

    def create(
        self,
        text: str,
        author_id: str,
        moment_id: str,
        display_name: Optional[str] = None
    ) -> Reply:
        """
        Append a reply to an existing moment.

        RAISES:
        - ValidationError: blank/too long text, missing author_id or moment_id
        - NotFoundError: moment_id does not refer to a live moment
        """
        text = clean_text(text)
        author_id = clean_author_id(author_id)
        if not isinstance(moment_id, str) or not moment_id:
            raise ValidationError("Moment ID is required")

        with self._feed.lock:
            if moment_id not in self._feed.moments:
                raise NotFoundError("Moment not found")

            reply = Reply(
                id=_new_id(),
                text=text,
                author_id=author_id,
                display_name=clean_display_name(display_name),
                moment_id=moment_id,
                created_at=self._feed.now(),
            )
            self._replies[reply.id] = reply
            logger.debug("Created reply %s on moment %s", reply.id, moment_id)

            while len(self._replies) > self.max_replies:
                evicted_id, _ = self._replies.popitem(last=False)
                logger.info(
                    "Evicted reply %s over retention bound %d",
                    evicted_id, self.max_replies
                )
            return reply

    def delete(self, reply_id: str, author_id: str) -> Reply:
        """Same owner-only / not-found semantics as MomentStore.delete."""
        author_id = clean_author_id(author_id)

        with self._feed.lock:
            reply = self._replies.get(reply_id)
            if reply is None or reply.author_id != author_id:
                raise NotFoundError("Reply not found or unauthorized")

            del self._replies[reply_id]
            logger.debug("Deleted reply %s", reply_id)
            return reply

    def delete_by_moment(self, moment_id: str) -> int:
        """
        Cascade: drop every reply of `moment_id`. Returns how many went.

        Internal - called by MomentStore under the shared lock.
        """
        with self._feed.lock:
            doomed = [
                reply_id for reply_id, reply in self._replies.items()
                if reply.moment_id == moment_id
            ]
            for reply_id in doomed:
                del self._replies[reply_id]
            return len(doomed)


# ============================================================================
# COORDINATOR
# ============================================================================

class FeedStore:
    """
    The one object holding all feed state.

    Built once per process by MomentsConfig.ready(); there is no module
    level instance. `clock` is injectable so tests can control timestamps.
    """

    def __init__(
        self,
        max_moments: int = MAX_MOMENTS,
        max_replies: int = MAX_REPLIES,
        clock=timezone.now
    ):
        self.lock = threading.RLock()
        self._clock = clock
        self._last_timestamp = None
        self.replies = ReplyStore(self, max_replies)
        self.moments = MomentStore(self, max_moments)

    def now(self):
        """Current time, clamped so it never goes backwards."""
        with self.lock:
            current = self._clock()
            if self._last_timestamp is not None and current < self._last_timestamp:
                current = self._last_timestamp
            self._last_timestamp = current
            return current
