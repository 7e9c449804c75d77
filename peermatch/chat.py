"""In-memory chat history per conversation partner."""
from __future__ import annotations

import dataclasses
from collections import defaultdict


@dataclasses.dataclass(frozen=True)
class ChatEntry:
    """One chat message.

    Attributes:
        sender: Participant identifier of the author.
        text: Message text.
    """

    sender: str
    text: str


class ChatLog:
    """Append-only chat history keyed by partner identifier.

    History outlives individual sessions: a partner whose connection closes
    and reopens keeps their history until the process exits. One partner
    can be selected as the active conversation.
    """

    def __init__(self) -> None:
        self._histories: dict[str, list[ChatEntry]] = defaultdict(list)
        self._active: str | None = None

    @property
    def active(self) -> str | None:
        """Partner of the currently selected conversation."""
        return self._active

    def append(self, partner: str, sender: str, text: str) -> ChatEntry:
        """Record a message in the conversation with `partner`."""
        entry = ChatEntry(sender=sender, text=text)
        self._histories[partner].append(entry)
        return entry

    def history(self, partner: str) -> list[ChatEntry]:
        """Get a copy of the conversation with `partner`."""
        return list(self._histories.get(partner, []))

    def select(self, partner: str | None) -> list[ChatEntry]:
        """Make `partner` the active conversation and return its history."""
        self._active = partner
        return [] if partner is None else self.history(partner)

    def is_active(self, partner: str) -> bool:
        """Check if `partner` is the active conversation."""
        return self._active == partner

    def partners(self) -> list[str]:
        """Partners with at least one message."""
        return [p for p, entries in self._histories.items() if entries]
