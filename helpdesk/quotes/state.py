from __future__ import annotations

from enum import Enum


class QuoteStatus(str, Enum):
    """Supported states for a quote's lifecycle."""

    DRAFT = "DRAFT"
    SENT = "SENT"
    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"
    EXPIRED = "EXPIRED"


class QuoteStateMachine:
    """Validate quote lifecycle transitions."""

    _TRANSITIONS: dict[QuoteStatus, set[QuoteStatus]] = {
        QuoteStatus.DRAFT: {QuoteStatus.SENT, QuoteStatus.EXPIRED},
        QuoteStatus.SENT: {QuoteStatus.PENDING, QuoteStatus.ACCEPTED, QuoteStatus.REJECTED, QuoteStatus.EXPIRED},
        QuoteStatus.PENDING: {QuoteStatus.ACCEPTED, QuoteStatus.REJECTED, QuoteStatus.EXPIRED},
        QuoteStatus.ACCEPTED: set(),
        QuoteStatus.REJECTED: {QuoteStatus.DRAFT},
        QuoteStatus.EXPIRED: {QuoteStatus.DRAFT},
    }

    # Item edits are frozen once a quote reaches one of these.
    _LOCKED: frozenset[QuoteStatus] = frozenset({QuoteStatus.ACCEPTED, QuoteStatus.EXPIRED})

    @classmethod
    def initial_state(cls) -> QuoteStatus:
        return QuoteStatus.DRAFT

    @classmethod
    def allowed_targets(cls, current: QuoteStatus) -> set[QuoteStatus]:
        return set(cls._TRANSITIONS.get(current, set()))

    @classmethod
    def can_transition(cls, current: QuoteStatus, new: QuoteStatus) -> bool:
        if current == new:
            return True
        return new in cls._TRANSITIONS.get(current, set())

    @classmethod
    def assert_transition(cls, current: QuoteStatus, new: QuoteStatus) -> None:
        if not cls.can_transition(current, new):
            raise ValueError(f"Cannot change status from {current.value} to {new.value}")

    @classmethod
    def is_locked(cls, status: QuoteStatus) -> bool:
        return status in cls._LOCKED

    @classmethod
    def locked_states(cls) -> frozenset[QuoteStatus]:
        return cls._LOCKED
