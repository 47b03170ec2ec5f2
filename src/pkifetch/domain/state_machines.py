"""State machine for a single fetch run.

Invariants:
    A bootstrap run only ever receives a CA certificate, an issue run only a bundle.
    COMPLETED and FAILED are terminal - no transitions out.
"""

import logging

from pkifetch.domain.models import FetchRun
from pkifetch.domain.states import FetchEvent, FetchMode, FetchState
from pkifetch.metrics import fetch_metrics

logger = logging.getLogger(__name__)


class InvalidTransitionError(Exception):
    """Raised when a fetch run receives an event its current state does not accept."""

    def __init__(self, run_id: str, current_state: FetchState, event: FetchEvent):
        self.run_id = run_id
        self.current_state = current_state
        self.event = event
        super().__init__(f"Fetch run {run_id} in state {current_state} cannot handle {event}")


class FetchStateMachine:
    """Drives FetchRun.state through the transition table.

    Transition Table:
        (PENDING, TRUST_RESOLVED) -> TRUST_RESOLVED
        (TRUST_RESOLVED, CA_RECEIVED) -> CA_RECEIVED          (bootstrap path)
        (TRUST_RESOLVED, BUNDLE_RECEIVED) -> BUNDLE_RECEIVED  (issue path)
        (CA_RECEIVED, ARTIFACTS_WRITTEN) -> COMPLETED
        (BUNDLE_RECEIVED, ARTIFACTS_WRITTEN) -> COMPLETED
        (any non-terminal, FAILED) -> FAILED
    """

    TRANSITIONS: dict[tuple[FetchState, FetchEvent], FetchState] = {
        (FetchState.PENDING, FetchEvent.TRUST_RESOLVED): FetchState.TRUST_RESOLVED,
        (FetchState.TRUST_RESOLVED, FetchEvent.CA_RECEIVED): FetchState.CA_RECEIVED,
        (FetchState.TRUST_RESOLVED, FetchEvent.BUNDLE_RECEIVED): FetchState.BUNDLE_RECEIVED,
        (FetchState.CA_RECEIVED, FetchEvent.ARTIFACTS_WRITTEN): FetchState.COMPLETED,
        (FetchState.BUNDLE_RECEIVED, FetchEvent.ARTIFACTS_WRITTEN): FetchState.COMPLETED,
        # Failure from every non-terminal state
        (FetchState.PENDING, FetchEvent.FAILED): FetchState.FAILED,
        (FetchState.TRUST_RESOLVED, FetchEvent.FAILED): FetchState.FAILED,
        (FetchState.CA_RECEIVED, FetchEvent.FAILED): FetchState.FAILED,
        (FetchState.BUNDLE_RECEIVED, FetchEvent.FAILED): FetchState.FAILED,
    }

    # Which receive event belongs to which mode
    RECEIVE_EVENTS = {
        FetchMode.BOOTSTRAP: FetchEvent.CA_RECEIVED,
        FetchMode.ISSUE: FetchEvent.BUNDLE_RECEIVED,
    }

    def __init__(self, run: FetchRun):
        self._run = run

    @property
    def state(self) -> FetchState:
        return self._run.state

    @property
    def is_terminal(self) -> bool:
        return self._run.state in (FetchState.COMPLETED, FetchState.FAILED)

    def can_transition(self, event: FetchEvent) -> bool:
        return (self._run.state, event) in self.TRANSITIONS

    def transition(self, event: FetchEvent) -> FetchState:
        """Apply ``event`` to the run.

        Raises:
            InvalidTransitionError: If the current state has no entry for ``event``
        """
        current = self._run.state
        run_id = str(self._run.run_id)

        new_state = self.TRANSITIONS.get((current, event))
        if new_state is None:
            logger.warning(
                "invalid_transition_attempted",
                extra={"run_id": run_id, "current_state": current.value, "event": event.value},
            )
            raise InvalidTransitionError(run_id, current, event)

        self._run.state = new_state
        logger.debug(
            "state_transition",
            extra={
                "run_id": run_id,
                "from_state": current.value,
                "to_state": new_state.value,
                "event": event.value,
            },
        )
        fetch_metrics.record_state_transition(current.value, new_state.value, event.value)
        return new_state

    def trust_resolved(self) -> FetchState:
        return self.transition(FetchEvent.TRUST_RESOLVED)

    def received(self) -> FetchState:
        """Record the backend response matching the run's mode.

        Raises:
            InvalidTransitionError: If trust has not been resolved yet
        """
        return self.transition(self.RECEIVE_EVENTS[self._run.mode])

    def artifacts_written(self) -> FetchState:
        return self.transition(FetchEvent.ARTIFACTS_WRITTEN)

    def fail(self) -> FetchState:
        """Move to FAILED. A run that already finished stays where it is."""
        if self.is_terminal:
            return self._run.state
        return self.transition(FetchEvent.FAILED)
