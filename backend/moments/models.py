"""
Data Models for MomentFeed
==========================

Design Philosophy:
------------------
1. Plain frozen dataclasses, not ORM models
   - The feed lives in process memory and is gone on restart
   - Frozen means a handed-out Moment/Reply can never be mutated behind
     the store's back; deletion is the only state change

2. Derived fields are never stored
   - Moment.replies is empty on every stored record
   - MomentStore.list() returns copies with replies joined in at read time
   - reply_count is len(replies), so it cannot drift from the live replies

3. Identity is self-asserted
   - author_id is whatever anonymous id the client generated
   - It doubles as the credential for owner-only delete; there is no
     real authentication behind it
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional


@dataclass(frozen=True)
class Reply:
    """A comment attached to exactly one Moment."""
    id: str
    text: str
    author_id: str
    display_name: str
    moment_id: str
    created_at: datetime

    @property
    def timestamp(self) -> int:
        """Creation time as epoch milliseconds (what clients sort on)."""
        return int(self.created_at.timestamp() * 1000)


@dataclass(frozen=True)
class Moment:
    """
    A top-level anonymous post with an optional image.

    `replies` is only populated on the read-time copies produced by
    MomentStore.list(); oldest reply first.
    """
    id: str
    text: str
    author_id: str
    display_name: str
    created_at: datetime
    image: Optional[str] = None
    replies: tuple['Reply', ...] = field(default=(), compare=False)

    @property
    def reply_count(self) -> int:
        return len(self.replies)

    @property
    def timestamp(self) -> int:
        return int(self.created_at.timestamp() * 1000)


# ============================================================================
# FEED CONSTANTS
# ============================================================================
# Defaults; settings.MOMENTS_MAX_MOMENTS / MOMENTS_MAX_REPLIES override them
MAX_MOMENTS = 1000
MAX_REPLIES = 5000
MAX_TEXT_LENGTH = 280
DEFAULT_DISPLAY_NAME = 'Anonymous User'
