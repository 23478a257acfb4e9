"""Upload session lifecycle state machine.

Tracks the state of one upload session and enforces valid transitions,
so the controller cannot, say, start transferring after the user aborted
at the partial-validation decision point.
"""

from __future__ import annotations

from photorelay.models import SessionState


class SessionStateMachine:
    """Finite state machine for a single upload session.

    Valid transitions::

        IDLE               -> VALIDATING
        VALIDATING         -> UPLOADING | AWAITING_DECISION | REJECTED
        AWAITING_DECISION  -> UPLOADING | ABORTED
        UPLOADING          -> COMPLETED | ABORTED
        COMPLETED          -> (terminal)
        REJECTED           -> (terminal)
        ABORTED            -> (terminal)

    Parameters
    ----------
    session_id:
        Identifier of the session being tracked (used in error messages).
    """

    VALID_TRANSITIONS: dict[SessionState, set[SessionState]] = {
        SessionState.IDLE: {SessionState.VALIDATING},
        SessionState.VALIDATING: {
            SessionState.UPLOADING,
            SessionState.AWAITING_DECISION,
            SessionState.REJECTED,
        },
        SessionState.AWAITING_DECISION: {SessionState.UPLOADING, SessionState.ABORTED},
        SessionState.UPLOADING: {SessionState.COMPLETED, SessionState.ABORTED},
        SessionState.COMPLETED: set(),
        SessionState.REJECTED: set(),
        SessionState.ABORTED: set(),
    }

    TERMINAL_STATES: frozenset[SessionState] = frozenset({
        SessionState.COMPLETED,
        SessionState.REJECTED,
        SessionState.ABORTED,
    })

    def __init__(self, session_id: str) -> None:
        self.session_id: str = session_id
        self.state: SessionState = SessionState.IDLE

    @property
    def is_terminal(self) -> bool:
        return self.state in self.TERMINAL_STATES

    def transition(self, new_state: SessionState) -> None:
        """Attempt to transition to *new_state*.

        Raises
        ------
        ValueError
            If the transition from the current state to *new_state* is
            not valid.
        """
        allowed = self.VALID_TRANSITIONS.get(self.state, set())

        if new_state not in allowed:
            raise ValueError(
                f"Invalid state transition: {self.state.value} -> {new_state.value} "
                f"for session {self.session_id}. "
                f"Allowed transitions from {self.state.value}: "
                f"{{{', '.join(sorted(s.value for s in allowed))}}}"
            )

        self.state = new_state
