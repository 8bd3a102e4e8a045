"""Report lifecycle rules.

A report moves ``open -> assigned -> en_route -> in_progress -> completed``.
Owners and admins may cancel any report that has not reached a terminal
state, and may archive completed or cancelled reports as ``closed``.
"""

from __future__ import annotations

from typing import Dict, Optional, Set, Tuple

REPORT_TYPES: Set[str] = {"tow", "roadside", "impound", "pd_tow"}

REPORT_STATUSES: Tuple[str, ...] = (
    "open",
    "assigned",
    "en_route",
    "in_progress",
    "completed",
    "cancelled",
    "closed",
)

ASSIGNEE_PROGRESSION: Dict[str, str] = {
    "assigned": "en_route",
    "en_route": "in_progress",
    "in_progress": "completed",
}

TERMINAL_STATUSES: Set[str] = {"completed", "cancelled", "closed"}
ACTIVE_ASSIGNED_STATUSES: Set[str] = {"assigned", "en_route", "in_progress"}
ARCHIVABLE_STATUSES: Set[str] = {"completed", "cancelled"}
DONE_STATUSES: Set[str] = {"completed", "closed"}

ROLES: Tuple[str, ...] = ("owner", "admin", "employee")
MANAGER_ROLES: Set[str] = {"owner", "admin"}


class TransitionError(Exception):
    """Raised when a requested report change is not allowed."""

    def __init__(self, message: str, *, forbidden: bool = False) -> None:
        super().__init__(message)
        self.forbidden = forbidden


def is_manager(role: Optional[str]) -> bool:
    return role in MANAGER_ROLES


def is_terminal(status: str) -> bool:
    return status in TERMINAL_STATUSES


def next_status(status: str) -> Optional[str]:
    """Return the single step the assignee may take from ``status``."""
    return ASSIGNEE_PROGRESSION.get(status)


def check_accept(status: str) -> None:
    if status != "open":
        raise TransitionError("Only open reports can be accepted")


def check_assign(status: str, role: Optional[str]) -> None:
    if not is_manager(role):
        raise TransitionError("Only owners and admins can assign reports", forbidden=True)
    if status != "open":
        raise TransitionError("Only open reports can be assigned")


def check_unassign(status: str, assigned_to: Optional[str], actor_id: str) -> None:
    if assigned_to != actor_id:
        raise TransitionError("Only the assignee can unassign this report", forbidden=True)
    if status not in ACTIVE_ASSIGNED_STATUSES:
        raise TransitionError("Report can no longer be unassigned")


def check_status_change(
    current: str,
    target: str,
    *,
    role: Optional[str],
    actor_id: str,
    assigned_to: Optional[str],
) -> None:
    """Validate a status change requested by ``actor_id``.

    Raises ``TransitionError`` with ``forbidden=True`` when the actor lacks
    the right to perform the change, and a plain ``TransitionError`` when the
    change is not a legal move from ``current``.
    """
    if target not in REPORT_STATUSES:
        raise TransitionError(f"Unknown status '{target}'")
    if target == "cancelled":
        if not is_manager(role):
            raise TransitionError("Only owners and admins can cancel reports", forbidden=True)
        if is_terminal(current):
            raise TransitionError("Report is already finished")
        return
    if target == "closed":
        if not is_manager(role):
            raise TransitionError("Only owners and admins can close reports", forbidden=True)
        if current not in ARCHIVABLE_STATUSES:
            raise TransitionError("Only completed or cancelled reports can be closed")
        return
    if target in {"open", "assigned"}:
        raise TransitionError("Use accept, assign or unassign to change assignment")
    if assigned_to != actor_id:
        raise TransitionError("Only the assignee can advance this report", forbidden=True)
    expected = next_status(current)
    if expected is None or target != expected:
        raise TransitionError(f"Cannot move report from '{current}' to '{target}'")
