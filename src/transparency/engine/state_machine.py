"""Anchor state machine: enforces valid lifecycle transitions.

Anchor lifecycle:
    PENDING → ANCHORED
    PENDING → FAILED

State semantics:
- PENDING: snapshot persisted, not yet published anywhere.
- ANCHORED: terminal. A target accepted the anchor and returned a locator.
- FAILED: terminal. Publishing failed; the reason is kept in the proof.
- EXPIRED: reserved. Nothing transitions into or out of it.

Fail-closed: any transition not listed is rejected. Terminal anchors are
never rewritten, so a confirmed proof cannot be silently replaced.
"""

from __future__ import annotations

from transparency.models.anchor import Anchor, AnchorStatus


# Valid transitions: {from_state: {allowed_to_states}}
_TRANSITIONS: dict[AnchorStatus, set[AnchorStatus]] = {
    AnchorStatus.PENDING: {AnchorStatus.ANCHORED, AnchorStatus.FAILED},
    # Terminal states: no outgoing transitions
    AnchorStatus.ANCHORED: set(),
    AnchorStatus.FAILED: set(),
    AnchorStatus.EXPIRED: set(),
}

_TERMINAL = frozenset({AnchorStatus.ANCHORED, AnchorStatus.FAILED, AnchorStatus.EXPIRED})


class AnchorStateMachine:
    """Validates anchor state transitions.

    Pure computation: validates transitions only. Persistence and audit
    emission are handled by AnchorLifecycle.
    """

    @staticmethod
    def validate_transition(anchor: Anchor, target: AnchorStatus) -> list[str]:
        """Check if a transition is valid. Returns errors (empty = OK)."""
        current = anchor.status
        allowed = _TRANSITIONS.get(current, set())

        if target not in allowed:
            allowed_str = ", ".join(s.value for s in sorted(allowed, key=lambda x: x.value))
            return [
                f"Invalid anchor transition for anchor {anchor.id}: "
                f"{current.value} → {target.value}. "
                f"Allowed from {current.value}: [{allowed_str}]"
            ]
        return []

    @staticmethod
    def is_terminal(status: AnchorStatus) -> bool:
        """Check if a state is terminal (no further transitions)."""
        return status in _TERMINAL

    @staticmethod
    def valid_transitions(status: AnchorStatus) -> set[AnchorStatus]:
        """Return the set of valid target states from the given state."""
        return set(_TRANSITIONS.get(status, set()))
