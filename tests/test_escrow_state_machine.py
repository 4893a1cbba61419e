"""
Escrow State Machine Tests
The transition table is closed: anything not listed is rejected
"""

import pytest

from models import EscrowStatus
from utils.escrow_state_machine import EscrowEvent, EscrowStateValidator
from utils.exception_handler import InvalidTransitionError


@pytest.mark.unit
class TestEscrowStateValidator:
    @pytest.mark.parametrize(
        "status, event, expected",
        [
            (EscrowStatus.PENDING, EscrowEvent.PAY, EscrowStatus.ESCROW_HELD),
            (EscrowStatus.PENDING, EscrowEvent.CANCEL, EscrowStatus.CANCELLED),
            (EscrowStatus.ESCROW_HELD, EscrowEvent.MARK_DELIVERED, EscrowStatus.DELIVERED),
            (EscrowStatus.DELIVERED, EscrowEvent.ACCEPT, EscrowStatus.COMPLETED),
            (EscrowStatus.DELIVERED, EscrowEvent.AUTO_RELEASE, EscrowStatus.COMPLETED),
            (EscrowStatus.DELIVERED, EscrowEvent.OPEN_DISPUTE, EscrowStatus.DISPUTED),
            (EscrowStatus.DISPUTED, EscrowEvent.RESOLVE_REFUND, EscrowStatus.REFUNDED),
            (EscrowStatus.DISPUTED, EscrowEvent.RESOLVE_RELEASE, EscrowStatus.COMPLETED),
        ],
    )
    def test_valid_transitions(self, status, event, expected):
        assert EscrowStateValidator.require_transition(status.value, event) == expected

    def test_terminal_states_accept_no_events(self):
        for status in (EscrowStatus.COMPLETED, EscrowStatus.REFUNDED, EscrowStatus.CANCELLED):
            assert EscrowStateValidator.is_terminal_state(status.value)
            assert EscrowStateValidator.get_valid_events(status.value) == set()

    def test_invalid_transition_raises_with_details(self):
        with pytest.raises(InvalidTransitionError) as exc_info:
            EscrowStateValidator.require_transition(EscrowStatus.PENDING.value, EscrowEvent.ACCEPT)

        assert exc_info.value.details == {"status": "pending", "event": "accept"}
        assert exc_info.value.status_code == 409

    def test_disputed_cannot_be_accepted_or_auto_released(self):
        assert not EscrowStateValidator.is_valid_transition(EscrowStatus.DISPUTED.value, EscrowEvent.ACCEPT)
        assert not EscrowStateValidator.is_valid_transition(EscrowStatus.DISPUTED.value, EscrowEvent.AUTO_RELEASE)

    def test_unknown_status_is_never_valid(self):
        assert EscrowStateValidator.next_state("archived", EscrowEvent.PAY) is None

    def test_funds_held_states(self):
        held = {status for status in EscrowStatus if EscrowStateValidator.holds_funds(status.value)}
        assert held == {EscrowStatus.ESCROW_HELD, EscrowStatus.DELIVERED, EscrowStatus.DISPUTED}
