"""Anchor engine: state machine, lifecycle and verification."""

from transparency.engine.lifecycle import AnchorLifecycle
from transparency.engine.state_machine import AnchorStateMachine
from transparency.engine.verifier import Verifier

__all__ = ["AnchorLifecycle", "AnchorStateMachine", "Verifier"]
