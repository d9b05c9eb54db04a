"""
Observation State Machine

Deterministic state machine for audit observations, plus the derived
status of the show cause notice that bundles them.

Observation lifecycle:
    PENDING_ADMIN_REVIEW -> SENT_TO_AGENCY
    SENT_TO_AGENCY       -> AGENCY_ACCEPTED | AGENCY_DISPUTED | AUTO_ACCEPTED
    AGENCY_ACCEPTED / AGENCY_DISPUTED / AUTO_ACCEPTED -> CLOSED (penalty)

Every move is executed by the services as a conditional UPDATE guarded
by the source states listed here, never as read-then-write.
"""
from typing import Any, Dict, Iterable, List, Tuple

from ...models.db_models import ObservationStatus, PenaltyStatus, ShowCauseStatus


# =============================================================================
# STATE CONFIGURATION
# =============================================================================
#
# AUTHORITY MODEL:
# - ADMIN: issues observations to the agency, assigns penalties
# - AGENCY: accepts or disputes while the response window is open
# - SYSTEM: deadline sweep auto-accepts once the window has elapsed
#
# =============================================================================

STATE_CONFIG = {
    ObservationStatus.PENDING_ADMIN_REVIEW: {
        "description": "Raised by auditor, awaiting admin review",
        "allowed_transitions": [
            ObservationStatus.SENT_TO_AGENCY,
            ObservationStatus.AWAITING_AGENCY_RESPONSE,
        ],
        "awaiting_response": False,
        "entry_authority": "AUDITOR",
    },
    ObservationStatus.SENT_TO_AGENCY: {
        "description": "Issued to agency, response window open",
        "allowed_transitions": [
            ObservationStatus.AGENCY_ACCEPTED,
            ObservationStatus.AGENCY_DISPUTED,
            ObservationStatus.AUTO_ACCEPTED,
        ],
        "awaiting_response": True,
        "entry_authority": "ADMIN",
    },
    ObservationStatus.AWAITING_AGENCY_RESPONSE: {
        "description": "Issued to agency, response window open",
        "allowed_transitions": [
            ObservationStatus.AGENCY_ACCEPTED,
            ObservationStatus.AGENCY_DISPUTED,
            ObservationStatus.AUTO_ACCEPTED,
        ],
        "awaiting_response": True,
        "entry_authority": "ADMIN",
    },
    ObservationStatus.AGENCY_ACCEPTED: {
        "description": "Agency accepted the finding",
        "allowed_transitions": [ObservationStatus.CLOSED],
        "awaiting_response": False,
        "entry_authority": "AGENCY",
    },
    ObservationStatus.AGENCY_DISPUTED: {
        "description": "Agency disputed the finding with justification",
        "allowed_transitions": [ObservationStatus.CLOSED],
        "awaiting_response": False,
        "entry_authority": "AGENCY",
    },
    ObservationStatus.AUTO_ACCEPTED: {
        "description": "Response deadline elapsed without a response",
        "allowed_transitions": [ObservationStatus.CLOSED],
        "awaiting_response": False,
        "entry_authority": "SYSTEM",
    },
    ObservationStatus.CLOSED: {
        "description": "Penalty assigned, observation closed",
        "allowed_transitions": [],  # Terminal state
        "awaiting_response": False,
        "entry_authority": "ADMIN",
    },
}

# Issued to the agency and still waiting on it
OPEN_STATUSES: Tuple[ObservationStatus, ...] = tuple(
    status for status, config in STATE_CONFIG.items() if config["awaiting_response"]
)

# A penalty may only be assigned from these
PENALIZABLE_STATUSES: Tuple[ObservationStatus, ...] = (
    ObservationStatus.AGENCY_ACCEPTED,
    ObservationStatus.AGENCY_DISPUTED,
    ObservationStatus.AUTO_ACCEPTED,
)

PENALTY_TRANSITIONS: Dict[PenaltyStatus, List[PenaltyStatus]] = {
    PenaltyStatus.DRAFT: [PenaltyStatus.SUBMITTED],
    PenaltyStatus.SUBMITTED: [PenaltyStatus.ACKNOWLEDGED, PenaltyStatus.PAID],
    PenaltyStatus.ACKNOWLEDGED: [PenaltyStatus.PAID],
    PenaltyStatus.PAID: [],
}


def can_transition(from_state: ObservationStatus, to_state: ObservationStatus) -> Tuple[bool, str]:
    """
    Check if an observation transition is allowed.

    Returns (allowed, reason)
    """
    allowed_transitions = STATE_CONFIG.get(from_state, {}).get("allowed_transitions", [])
    if to_state in allowed_transitions:
        return True, "Transition allowed"
    return False, f"Cannot transition from {from_state.value} to {to_state.value}"


def sources_for(to_state: ObservationStatus) -> List[ObservationStatus]:
    """Every state from which `to_state` can be entered."""
    return [
        status for status, config in STATE_CONFIG.items()
        if to_state in config["allowed_transitions"]
    ]


def is_awaiting_response(status: ObservationStatus) -> bool:
    return status in OPEN_STATUSES


def is_terminal_for_notice(status: ObservationStatus) -> bool:
    """Resolved as far as the notice is concerned: no longer waiting on the agency."""
    return not is_awaiting_response(status) and status != ObservationStatus.PENDING_ADMIN_REVIEW


def derive_notice_status(
    child_statuses: Iterable[ObservationStatus],
    current: ShowCauseStatus = ShowCauseStatus.ISSUED,
) -> ShowCauseStatus:
    """
    Status a notice should hold given its observations.

    CLOSED is only ever set explicitly by an admin and is kept. Otherwise
    the notice is RESPONDED once no observation is still awaiting the
    agency, and ISSUED while any is.
    """
    if current == ShowCauseStatus.CLOSED:
        return ShowCauseStatus.CLOSED

    statuses = list(child_statuses)
    if statuses and all(is_terminal_for_notice(s) for s in statuses):
        return ShowCauseStatus.RESPONDED
    return ShowCauseStatus.ISSUED


def can_transition_penalty(from_state: PenaltyStatus, to_state: PenaltyStatus) -> Tuple[bool, str]:
    if to_state in PENALTY_TRANSITIONS.get(from_state, []):
        return True, "Transition allowed"
    return False, f"Cannot transition penalty from {from_state.value} to {to_state.value}"


def describe_state(status: ObservationStatus) -> Dict[str, Any]:
    config = STATE_CONFIG.get(status, {})
    return {
        "status": status.value,
        "description": config.get("description"),
        "next_states": [s.value for s in config.get("allowed_transitions", [])],
        "is_terminal": not config.get("allowed_transitions"),
    }
