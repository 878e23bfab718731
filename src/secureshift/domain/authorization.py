"""Who may move a workflow into which state.

Roles are relative to one workflow: the same person can be the assigned guard
on one job and a plain applicant on another, so the role is resolved per
request from the workflow's ``company_id`` and ``selected_guard_id``.
"""

from __future__ import annotations

from types import MappingProxyType
from typing import Protocol

from secureshift.domain.enums import SYSTEM_ACTOR, ActorRole, WorkflowState
from secureshift.domain.exceptions import UnauthorizedActorError

_R = ActorRole
_S = WorkflowState

TRANSITION_ACTORS: MappingProxyType[WorkflowState, frozenset[ActorRole]] = MappingProxyType(
    {
        _S.APPLIED: frozenset({_R.APPLICANT}),
        _S.UNDER_REVIEW: frozenset({_R.COMPANY, _R.SYSTEM}),
        _S.ACCEPTED: frozenset({_R.COMPANY}),
        _S.IN_PROGRESS: frozenset({_R.ASSIGNED_GUARD}),
        _S.COMPLETED: frozenset({_R.ASSIGNED_GUARD}),
        _S.RATED: frozenset({_R.SYSTEM}),
        _S.PAID: frozenset({_R.SYSTEM}),
        _S.CLOSED: frozenset({_R.COMPANY, _R.SYSTEM}),
        _S.CANCELLED: frozenset({_R.COMPANY, _R.ASSIGNED_GUARD}),
    }
)

# posted is only ever entered by creation
_missing = set(WorkflowState) - {WorkflowState.POSTED} - set(TRANSITION_ACTORS)
if _missing:
    raise RuntimeError(f"Authorization table is missing target states: {sorted(_missing)}")


class _HasParties(Protocol):
    company_id: str
    selected_guard_id: str | None


def resolve_actor_role(workflow: _HasParties, actor_id: str) -> ActorRole:
    """Resolve ``actor_id`` to its role on ``workflow``.

    Accepts either the persisted row or the domain record.
    """
    if actor_id == SYSTEM_ACTOR:
        return ActorRole.SYSTEM
    if actor_id == workflow.company_id:
        return ActorRole.COMPANY
    if workflow.selected_guard_id is not None and actor_id == workflow.selected_guard_id:
        return ActorRole.ASSIGNED_GUARD
    return ActorRole.APPLICANT


def is_authorized(role: ActorRole, target: WorkflowState) -> bool:
    return role in TRANSITION_ACTORS.get(target, frozenset())


def authorize(workflow: _HasParties, actor_id: str, target: WorkflowState) -> ActorRole:
    """Return the actor's role, or raise if it may not move the workflow to ``target``.

    Raises:
        UnauthorizedActorError: the resolved role is not allowed for ``target``.
    """
    role = resolve_actor_role(workflow, actor_id)
    if not is_authorized(role, target):
        raise UnauthorizedActorError(actor_id, f"move the workflow to {target.value} as {role.value}")
    return role
