#!/usr/bin/env python3
"""
Escrow State Machine
Closed transition table for the escrow transaction lifecycle
"""

import logging
from enum import Enum
from typing import Dict, FrozenSet, Optional, Set

from models import EscrowStatus
from utils.exception_handler import InvalidTransitionError

logger = logging.getLogger(__name__)


class EscrowEvent(Enum):
    """Typed transition requests; there is no generic status update"""

    PAY = "pay"  # PENDING -> ESCROW_HELD
    MARK_DELIVERED = "mark_delivered"  # ESCROW_HELD -> DELIVERED
    ACCEPT = "accept"  # DELIVERED -> COMPLETED
    AUTO_RELEASE = "auto_release"  # DELIVERED -> COMPLETED (sweep)
    OPEN_DISPUTE = "open_dispute"  # DELIVERED (ESCROW_HELD by policy) -> DISPUTED
    RESOLVE_RELEASE = "resolve_release"  # DISPUTED -> COMPLETED
    RESOLVE_REFUND = "resolve_refund"  # DISPUTED -> REFUNDED
    CANCEL = "cancel"  # PENDING -> CANCELLED


class EscrowStateValidator:
    """Validates escrow state transitions and prevents invalid changes"""

    # (from-state, event) -> to-state
    TRANSITIONS: Dict[tuple, EscrowStatus] = {
        (EscrowStatus.PENDING, EscrowEvent.PAY): EscrowStatus.ESCROW_HELD,
        (EscrowStatus.PENDING, EscrowEvent.CANCEL): EscrowStatus.CANCELLED,
        (EscrowStatus.ESCROW_HELD, EscrowEvent.MARK_DELIVERED): EscrowStatus.DELIVERED,
        (EscrowStatus.ESCROW_HELD, EscrowEvent.OPEN_DISPUTE): EscrowStatus.DISPUTED,
        (EscrowStatus.DELIVERED, EscrowEvent.ACCEPT): EscrowStatus.COMPLETED,
        (EscrowStatus.DELIVERED, EscrowEvent.AUTO_RELEASE): EscrowStatus.COMPLETED,
        (EscrowStatus.DELIVERED, EscrowEvent.OPEN_DISPUTE): EscrowStatus.DISPUTED,
        (EscrowStatus.DISPUTED, EscrowEvent.RESOLVE_RELEASE): EscrowStatus.COMPLETED,
        (EscrowStatus.DISPUTED, EscrowEvent.RESOLVE_REFUND): EscrowStatus.REFUNDED,
    }

    TERMINAL_STATES: FrozenSet[EscrowStatus] = frozenset(
        {EscrowStatus.COMPLETED, EscrowStatus.REFUNDED, EscrowStatus.CANCELLED}
    )

    # States in which the buyer's funds are held by the platform
    FUNDS_HELD_STATES: FrozenSet[EscrowStatus] = frozenset(
        {EscrowStatus.ESCROW_HELD, EscrowStatus.DELIVERED, EscrowStatus.DISPUTED}
    )

    @classmethod
    def next_state(cls, current_status: str, event: EscrowEvent) -> Optional[EscrowStatus]:
        try:
            current = EscrowStatus(current_status)
        except ValueError:
            return None
        return cls.TRANSITIONS.get((current, event))

    @classmethod
    def require_transition(cls, current_status: str, event: EscrowEvent) -> EscrowStatus:
        """Target state for the event or InvalidTransitionError"""
        target = cls.next_state(current_status, event)
        if target is None:
            logger.warning(f"🚫 Invalid escrow transition: {current_status} --{event.value}--> ?")
            raise InvalidTransitionError(
                f"Cannot {event.value.replace('_', ' ')} a transaction in status '{current_status}'",
                details={"status": current_status, "event": event.value},
            )
        return target

    @classmethod
    def is_valid_transition(cls, current_status: str, event: EscrowEvent) -> bool:
        return cls.next_state(current_status, event) is not None

    @classmethod
    def get_valid_events(cls, current_status: str) -> Set[EscrowEvent]:
        """Get all events accepted in the current status"""
        return {event for (state, event) in cls.TRANSITIONS if state.value == current_status}

    @classmethod
    def is_terminal_state(cls, status: str) -> bool:
        return EscrowStatus(status) in cls.TERMINAL_STATES

    @classmethod
    def holds_funds(cls, status: str) -> bool:
        return EscrowStatus(status) in cls.FUNDS_HELD_STATES


__all__ = ["EscrowEvent", "EscrowStateValidator"]
