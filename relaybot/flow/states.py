"""
relaybot/flow/states.py

Purpose: Defines user and relay states

- UserState: verification lifecycle of an end user
- RelayStage: steps of a single relay attempt
- Allowed relay transitions (one RETRY edge back to RESOLVE_TOPIC)
"""

from enum import Enum
from typing import Dict, List


class UserState(str, Enum):
    """
    Verification lifecycle of an end user.
    Only verified users have their messages relayed.
    """

    NEW = "new"
    PENDING_VERIFICATION = "pending_verification"
    VERIFIED = "verified"


class RelayStage(str, Enum):
    """
    Steps of one relay attempt, in execution order.
    """

    RESOLVE_TOPIC = "RESOLVE_TOPIC"
    FORWARD_CONTENT = "FORWARD_CONTENT"
    ENSURE_CARD = "ENSURE_CARD"
    PERSIST = "PERSIST"
    DONE = "DONE"

    # Recovery / terminal
    RETRY = "RETRY"
    FAIL = "FAIL"


# Any working stage may observe an invalid topic (RETRY) or a hard failure (FAIL)
RELAY_TRANSITIONS: Dict[RelayStage, List[RelayStage]] = {
    RelayStage.RESOLVE_TOPIC: [
        RelayStage.FORWARD_CONTENT,
        RelayStage.RETRY,
        RelayStage.FAIL,
    ],
    RelayStage.FORWARD_CONTENT: [
        RelayStage.ENSURE_CARD,
        RelayStage.RETRY,
        RelayStage.FAIL,
    ],
    RelayStage.ENSURE_CARD: [
        RelayStage.PERSIST,
        RelayStage.RETRY,
        RelayStage.FAIL,
    ],
    RelayStage.PERSIST: [
        RelayStage.DONE,
        RelayStage.FAIL,
    ],
    RelayStage.RETRY: [
        RelayStage.RESOLVE_TOPIC,
        RelayStage.FAIL,
    ],
    RelayStage.DONE: [],
    RelayStage.FAIL: [],
}


def is_valid_transition(from_stage: RelayStage, to_stage: RelayStage) -> bool:
    """
    Checks if a relay stage transition is allowed.

    Args:
        from_stage: Current stage
        to_stage: Target stage

    Returns:
        True if transition is allowed, False otherwise
    """
    return to_stage in RELAY_TRANSITIONS.get(from_stage, [])
