"""Mutual match detection."""
from __future__ import annotations

from typing import Protocol


class LikeState(Protocol):
    """Anything exposing the two like flags of a session."""

    @property
    def liked_by_me(self) -> bool:
        """Local participant liked the peer."""
        ...

    @property
    def likes_me(self) -> bool:
        """Peer liked the local participant."""
        ...


def is_match(state: LikeState) -> bool:
    """Check if both participants like each other."""
    return state.liked_by_me and state.likes_me


class MatchTracker:
    """Detects the first time a session becomes a match.

    Each session owns one tracker so the match is reported at most once per
    session lifetime. A session recreated after a reconnect starts with a
    fresh tracker.
    """

    def __init__(self) -> None:
        self._matched = False

    @property
    def matched(self) -> bool:
        """A match has been reported."""
        return self._matched

    def update(self, state: LikeState) -> bool:
        """Re-evaluate the like flags after either one changed.

        Returns:
            `True` only on the call where the match first becomes true.
        """
        if self._matched or not is_match(state):
            return False
        self._matched = True
        return True
