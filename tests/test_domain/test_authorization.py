"""Tests for per-workflow actor roles and the authorization table."""

from __future__ import annotations

from dataclasses import dataclass

import pytest

from secureshift.domain.authorization import (
    TRANSITION_ACTORS,
    authorize,
    is_authorized,
    resolve_actor_role,
)
from secureshift.domain.enums import SYSTEM_ACTOR, ActorRole, WorkflowState
from secureshift.domain.exceptions import UnauthorizedActorError

S = WorkflowState


@dataclass
class Parties:
    company_id: str = "company-1"
    selected_guard_id: str | None = "guard-1"


class TestResolveActorRole:
    def test_roles(self) -> None:
        wf = Parties()
        assert resolve_actor_role(wf, SYSTEM_ACTOR) is ActorRole.SYSTEM
        assert resolve_actor_role(wf, "company-1") is ActorRole.COMPANY
        assert resolve_actor_role(wf, "guard-1") is ActorRole.ASSIGNED_GUARD
        assert resolve_actor_role(wf, "guard-9") is ActorRole.APPLICANT

    def test_nobody_is_assigned_before_acceptance(self) -> None:
        wf = Parties(selected_guard_id=None)
        assert resolve_actor_role(wf, "guard-1") is ActorRole.APPLICANT


class TestTransitionActors:
    def test_every_target_except_posted_is_covered(self) -> None:
        assert set(TRANSITION_ACTORS) == set(WorkflowState) - {S.POSTED}

    @pytest.mark.parametrize(
        ("role", "target", "allowed"),
        [
            (ActorRole.APPLICANT, S.APPLIED, True),
            (ActorRole.COMPANY, S.APPLIED, False),
            (ActorRole.SYSTEM, S.UNDER_REVIEW, True),
            (ActorRole.COMPANY, S.ACCEPTED, True),
            (ActorRole.APPLICANT, S.ACCEPTED, False),
            (ActorRole.ASSIGNED_GUARD, S.IN_PROGRESS, True),
            (ActorRole.COMPANY, S.COMPLETED, False),
            (ActorRole.COMPANY, S.RATED, False),
            (ActorRole.SYSTEM, S.PAID, True),
            (ActorRole.ASSIGNED_GUARD, S.PAID, False),
            (ActorRole.ASSIGNED_GUARD, S.CANCELLED, True),
            (ActorRole.APPLICANT, S.CANCELLED, False),
        ],
    )
    def test_is_authorized(self, role: ActorRole, target: WorkflowState, allowed: bool) -> None:
        assert is_authorized(role, target) is allowed


class TestAuthorize:
    def test_returns_role(self) -> None:
        assert authorize(Parties(), "guard-1", S.COMPLETED) is ActorRole.ASSIGNED_GUARD

    def test_company_cannot_complete_the_job(self) -> None:
        with pytest.raises(UnauthorizedActorError) as exc_info:
            authorize(Parties(), "company-1", S.COMPLETED)
        assert exc_info.value.code == "UNAUTHORIZED"
        assert exc_info.value.actor_id == "company-1"

    def test_clients_cannot_pay(self) -> None:
        with pytest.raises(UnauthorizedActorError):
            authorize(Parties(), "company-1", S.PAID)
