"""Completion policies for expense approval.

An expense stores only its approver list, a snapshot of the policy chosen at
submission time and an append-only decision log. Who may act next and whether
the expense is resolved are always derived from those three values, never
kept in a separately maintained counter.
"""
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple

from app.logic.exceptions import ConfigurationError

APPROVED = "approved"
REJECTED = "rejected"


class CompletionMode(str, Enum):
    SEQUENTIAL = "sequential"   # each approver in order, any rejection terminates
    ALL = "all"                 # every approver, any order, any rejection terminates
    ANY = "any"                 # the first decision is final
    PERCENTAGE = "percentage"   # share of approvals must reach the threshold
    HYBRID = "hybrid"           # decisive approver approves OR percentage reached


@dataclass(frozen=True)
class CompletionPolicy:
    mode: CompletionMode
    threshold: Optional[Decimal] = None
    decisive_approver_id: Optional[int] = None

    def __post_init__(self):
        if self.mode in (CompletionMode.PERCENTAGE, CompletionMode.HYBRID):
            if self.threshold is None or not (0 < self.threshold <= 100):
                raise ConfigurationError(
                    f"{self.mode.value} completion requires a threshold in (0, 100]"
                )
        if self.mode is CompletionMode.HYBRID and self.decisive_approver_id is None:
            raise ConfigurationError("hybrid completion requires a decisive approver")

    @property
    def is_sequential(self) -> bool:
        return self.mode is CompletionMode.SEQUENTIAL

    def to_dict(self) -> dict:
        return {
            "mode": self.mode.value,
            "threshold": str(self.threshold) if self.threshold is not None else None,
            "decisive_approver_id": self.decisive_approver_id,
        }

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "CompletionPolicy":
        if not data:
            raise ConfigurationError("Expense has no completion policy recorded")
        threshold = data.get("threshold")
        return cls(
            mode=CompletionMode(data["mode"]),
            threshold=Decimal(str(threshold)) if threshold is not None else None,
            decisive_approver_id=data.get("decisive_approver_id"),
        )


def _slot_entries(history: Sequence[dict]) -> List[Tuple[int, str]]:
    """(approver slot, decision) pairs in log order.

    An override approval fills the slot named by ``on_behalf_of``; override
    rejections are terminal and handled by ``resolve``.
    """
    slots: List[Tuple[int, str]] = []
    for entry in history:
        if not entry.get("override"):
            slots.append((entry["approver_id"], entry["decision"]))
        elif entry["decision"] == APPROVED and entry.get("on_behalf_of") is not None:
            slots.append((entry["on_behalf_of"], APPROVED))
    return slots


def _decisions_by_approver(approvers: Sequence[int], history: Sequence[dict]) -> Dict[int, str]:
    """First recorded decision per listed approver."""
    decisions: Dict[int, str] = {}
    for approver_id, decision in _slot_entries(history):
        if approver_id in approvers and approver_id not in decisions:
            decisions[approver_id] = decision
    return decisions


def _leading_approvals(approvers: Sequence[int], history: Sequence[dict]) -> int:
    count = 0
    for approver_id, decision in _slot_entries(history):
        if count >= len(approvers):
            break
        if approver_id != approvers[count] or decision != APPROVED:
            break
        count += 1
    return count


def current_index(policy: CompletionPolicy, approvers: Sequence[int], history: Sequence[dict]) -> int:
    if policy.is_sequential:
        return _leading_approvals(approvers, history)
    return len(_decisions_by_approver(approvers, history))


def awaiting_approvers(policy: CompletionPolicy, approvers: Sequence[int], history: Sequence[dict]) -> List[int]:
    """Approvers allowed to decide right now, given the decisions so far."""
    if resolve(policy, approvers, history) is not None:
        return []
    if policy.is_sequential:
        index = _leading_approvals(approvers, history)
        return [approvers[index]] if index < len(approvers) else []
    decided = _decisions_by_approver(approvers, history)
    return [approver for approver in approvers if approver not in decided]


def approval_counts(approvers: Sequence[int], history: Sequence[dict]) -> Dict[str, int]:
    decisions = _decisions_by_approver(approvers, history)
    approved = sum(1 for decision in decisions.values() if decision == APPROVED)
    rejected = sum(1 for decision in decisions.values() if decision == REJECTED)
    return {
        "approved": approved,
        "rejected": rejected,
        "undecided": len(approvers) - approved - rejected,
    }


def _percentage_reached(threshold: Decimal, approved: int, total: int) -> bool:
    return Decimal(approved) * 100 >= threshold * total


def resolve(policy: CompletionPolicy, approvers: Sequence[int], history: Sequence[dict]) -> Optional[str]:
    """Return "approved", "rejected" or None while the expense is still open."""
    for entry in history:
        if entry.get("override") and entry["decision"] == REJECTED:
            return REJECTED

    if not approvers:
        raise ConfigurationError("Expense has no approvers to resolve against")

    decisions = _decisions_by_approver(approvers, history)
    counts = approval_counts(approvers, history)
    total = len(approvers)

    if policy.mode in (CompletionMode.SEQUENTIAL, CompletionMode.ALL):
        if counts["rejected"]:
            return REJECTED
        if counts["approved"] == total:
            return APPROVED
        return None

    if policy.mode is CompletionMode.ANY:
        for approver_id, decision in _slot_entries(history):
            if approver_id in approvers:
                return decision
        return None

    reached = _percentage_reached(policy.threshold, counts["approved"], total)
    reachable = _percentage_reached(policy.threshold, counts["approved"] + counts["undecided"], total)

    if policy.mode is CompletionMode.PERCENTAGE:
        if reached:
            return APPROVED
        if not reachable:
            return REJECTED
        return None

    if policy.mode is CompletionMode.HYBRID:
        decisive = decisions.get(policy.decisive_approver_id)
        if decisive == APPROVED or reached:
            return APPROVED
        if decisive == REJECTED and not reachable:
            return REJECTED
        return None

    raise ConfigurationError(f"Unsupported completion mode {policy.mode!r}")
