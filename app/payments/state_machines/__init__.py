"""
State machine enums and helpers for payment models.

This module defines the escrow states, events and transition table used by
EscrowEntry with django-fsm.
"""

from payments.state_machines.states import (
    ESCROW_TRANSITIONS,
    TERMINAL_ESCROW_STATES,
    EscrowEvent,
    EscrowState,
    PayoutAttemptOutcome,
    has_reached,
    next_escrow_state,
    sources_for,
    target_for,
)

__all__ = [
    "ESCROW_TRANSITIONS",
    "TERMINAL_ESCROW_STATES",
    "EscrowEvent",
    "EscrowState",
    "PayoutAttemptOutcome",
    "has_reached",
    "next_escrow_state",
    "sources_for",
    "target_for",
]
