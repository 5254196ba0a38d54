"""
Referral state machine for managing status transitions

A referral moves along three independent axes:
    status        pending -> confirmed | rejected       (set by the recipient)
    audit_status  pending -> approved | rejected        (network only, set by a reviewer)
    deal_status   verification_pending -> verified      (deal only, set by verification)
Every non-pending value is terminal.
"""

from enum import Enum
from typing import Dict, List, Set

from app.models import ReferralStatus, AuditStatus, DealStatus

class ReferralStateMachine:
    """
    Manages valid referral transitions
    """

    def __init__(self):
        self.transitions: Dict[type, Dict[Enum, Set[Enum]]] = {
            ReferralStatus: {
                ReferralStatus.PENDING: {
                    ReferralStatus.CONFIRMED,
                    ReferralStatus.REJECTED
                },
                ReferralStatus.CONFIRMED: set(),
                ReferralStatus.REJECTED: set(),
            },
            AuditStatus: {
                AuditStatus.PENDING: {
                    AuditStatus.APPROVED,
                    AuditStatus.REJECTED
                },
                AuditStatus.APPROVED: set(),
                AuditStatus.REJECTED: set(),
            },
            DealStatus: {
                # No rejection: unverifiable deals stay pending
                DealStatus.VERIFICATION_PENDING: {DealStatus.VERIFIED},
                DealStatus.VERIFIED: set(),
            },
        }

    def can_transition(self, current_status: Enum, new_status: Enum) -> bool:
        """
        Check if transition is valid

        Args:
            current_status: Current value on one axis
            new_status: Desired value on the same axis

        Returns:
            True if transition is allowed
        """
        if current_status is None or type(current_status) is not type(new_status):
            return False
        axis = self.transitions.get(type(current_status), {})
        return new_status in axis.get(current_status, set())

    def get_valid_transitions(self, current_status: Enum) -> List[Enum]:
        """Get list of valid transitions from current value"""
        axis = self.transitions.get(type(current_status), {})
        return list(axis.get(current_status, set()))

    def is_terminal_state(self, status: Enum) -> bool:
        """Check if no more transitions are possible"""
        return len(self.get_valid_transitions(status)) == 0
