"""
State Machine - FSM for one upgrade run.
========================================
Validated transitions with history and optional hooks. The orchestrator
records each phase of a run through `transition()`; an invalid transition
is logged and refused, and the recorded history becomes the run result's
state_history.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Callable

logger = logging.getLogger(__name__)


class UpgradeState(str, Enum):
    IDLE = "idle"
    ANALYZING = "analyzing"
    PATH_PLANNING = "path_planning"
    VALIDATING_PREREQUISITES = "validating_prerequisites"
    CHECKPOINTING = "checkpointing"
    EXECUTING_STEP = "executing_step"
    VALIDATING_STEP = "validating_step"
    FINAL_VALIDATION = "final_validation"
    COMPLETE = "complete"
    FAILED = "failed"
    ROLLING_BACK = "rolling_back"
    ROLLED_BACK = "rolled_back"


# Valid transitions: from_state → [to_states]
TRANSITIONS: dict[UpgradeState, list[UpgradeState]] = {
    UpgradeState.IDLE: [UpgradeState.ANALYZING],
    UpgradeState.ANALYZING: [UpgradeState.PATH_PLANNING, UpgradeState.FAILED],
    UpgradeState.PATH_PLANNING: [UpgradeState.VALIDATING_PREREQUISITES, UpgradeState.FAILED],
    UpgradeState.VALIDATING_PREREQUISITES: [UpgradeState.CHECKPOINTING, UpgradeState.FAILED],
    UpgradeState.CHECKPOINTING: [
        UpgradeState.EXECUTING_STEP, UpgradeState.FINAL_VALIDATION, UpgradeState.FAILED,
    ],
    UpgradeState.EXECUTING_STEP: [
        UpgradeState.VALIDATING_STEP, UpgradeState.CHECKPOINTING,
        UpgradeState.EXECUTING_STEP, UpgradeState.FINAL_VALIDATION, UpgradeState.FAILED,
    ],
    UpgradeState.VALIDATING_STEP: [
        UpgradeState.CHECKPOINTING, UpgradeState.EXECUTING_STEP,
        UpgradeState.FINAL_VALIDATION, UpgradeState.FAILED,
    ],
    UpgradeState.FINAL_VALIDATION: [UpgradeState.COMPLETE, UpgradeState.FAILED],
    UpgradeState.FAILED: [UpgradeState.ROLLING_BACK],
    UpgradeState.ROLLING_BACK: [UpgradeState.ROLLED_BACK, UpgradeState.FAILED],
    UpgradeState.COMPLETE: [],
    UpgradeState.ROLLED_BACK: [],
}


class StateTransition:
    """Record of a state transition."""

    def __init__(self, from_state: UpgradeState, to_state: UpgradeState, reason: str = ""):
        self.from_state = from_state
        self.to_state = to_state
        self.reason = reason
        self.timestamp = datetime.now(timezone.utc)


class UpgradeStateMachine:
    """
    Finite State Machine for an upgrade run.
    Validates transitions, runs hooks, keeps history.
    """

    def __init__(self, run_id: str, initial_state: UpgradeState = UpgradeState.IDLE):
        self.run_id = run_id
        self.state = initial_state
        self.history: list[StateTransition] = []
        self._hooks_pre: dict[str, list[Callable]] = {}
        self._hooks_post: dict[str, list[Callable]] = {}

    def transition(self, to_state: UpgradeState, reason: str = "") -> bool:
        """
        Attempt a state transition.
        Returns True if successful, False if invalid.
        """
        if to_state not in TRANSITIONS.get(self.state, []):
            logger.warning(
                f"Invalid transition {self.state.value} → {to_state.value} for run {self.run_id[:8]}"
            )
            return False

        hook_key = f"{self.state.value}→{to_state.value}"
        for hook in self._hooks_pre.get(hook_key, []):
            try:
                hook(self.state, to_state)
            except Exception as e:
                logger.error(f"Pre-hook failed: {e}")
                return False

        self.history.append(StateTransition(self.state, to_state, reason))
        old_state = self.state
        self.state = to_state

        logger.debug(f"Run {self.run_id[:8]}: {old_state.value} → {to_state.value} ({reason})")

        for hook in self._hooks_post.get(hook_key, []):
            try:
                hook(old_state, to_state)
            except Exception as e:
                logger.error(f"Post-hook failed: {e}")

        return True

    def on_pre(self, from_state: str, to_state: str, hook: Callable):
        """Register a pre-transition hook. Raising vetoes the transition."""
        self._hooks_pre.setdefault(f"{from_state}→{to_state}", []).append(hook)

    def on_post(self, from_state: str, to_state: str, hook: Callable):
        self._hooks_post.setdefault(f"{from_state}→{to_state}", []).append(hook)

    def get_history(self) -> list[dict]:
        return [
            {
                "from": t.from_state.value,
                "to": t.to_state.value,
                "reason": t.reason,
                "timestamp": t.timestamp.isoformat(),
            }
            for t in self.history
        ]
