"""Role gate consulted before every expense and treasury transition.

Each predicate maps `(roles, status)` to a bool and never mutates anything.
Ownership matters only for collaborators, who may edit and annul their own
expenses but nobody else's.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, Optional

from treasury.core.errors import Unauthorized
from treasury.models.constants import ExpenseStatus, Role

ANY_ROLE: FrozenSet[Role] = frozenset(Role)
APPROVERS: FrozenSet[Role] = frozenset({Role.APPROVER, Role.RESPONSIBLE, Role.ADMIN})
OWNERS: FrozenSet[Role] = frozenset({Role.COLLABORATOR, Role.RESPONSIBLE, Role.ADMIN})
MANAGERS: FrozenSet[Role] = frozenset({Role.RESPONSIBLE, Role.ADMIN})

# Roles that bypass the own-expense restriction.
UNRESTRICTED: FrozenSet[Role] = MANAGERS


@dataclass(frozen=True)
class Actor:
    user_id: str
    roles: FrozenSet[Role] = field(default_factory=frozenset)

    @classmethod
    def of(cls, user_id: str, *roles: str | Role) -> "Actor":
        return cls(user_id=user_id, roles=frozenset(Role(r) for r in roles))

    def has_any(self, roles: Iterable[Role]) -> bool:
        return bool(self.roles & frozenset(roles))


@dataclass(frozen=True)
class Rule:
    roles: FrozenSet[Role]
    statuses: Optional[FrozenSet[ExpenseStatus]]  # None: status independent
    owner_only_for_collaborator: bool = False


RULES: Dict[str, Rule] = {
    "create": Rule(ANY_ROLE, None),
    "edit": Rule(OWNERS, frozenset({ExpenseStatus.DRAFT}), owner_only_for_collaborator=True),
    "submit": Rule(OWNERS, frozenset({ExpenseStatus.DRAFT}), owner_only_for_collaborator=True),
    "approve": Rule(APPROVERS, frozenset({ExpenseStatus.PENDING})),
    "reject": Rule(APPROVERS, frozenset({ExpenseStatus.PENDING})),
    "mark_paid": Rule(APPROVERS, frozenset({ExpenseStatus.APPROVED})),
    "annul": Rule(
        OWNERS,
        frozenset({ExpenseStatus.DRAFT, ExpenseStatus.PENDING, ExpenseStatus.APPROVED}),
        owner_only_for_collaborator=True,
    ),
    "delete": Rule(MANAGERS, frozenset({ExpenseStatus.DRAFT})),
    "attach_evidence": Rule(
        ANY_ROLE,
        frozenset({ExpenseStatus.DRAFT, ExpenseStatus.PENDING, ExpenseStatus.APPROVED, ExpenseStatus.PAID}),
        owner_only_for_collaborator=True,
    ),
    "manage_treasury": Rule(MANAGERS, None),
}


def _allowed(action: str, roles: FrozenSet[Role], status: Optional[ExpenseStatus]) -> bool:
    rule = RULES[action]
    if not roles & rule.roles:
        return False
    if rule.statuses is not None and status is not None and status not in rule.statuses:
        return False
    return True


def can_create(roles: FrozenSet[Role], status: Optional[ExpenseStatus] = None) -> bool:
    return _allowed("create", roles, status)


def can_edit(roles: FrozenSet[Role], status: ExpenseStatus) -> bool:
    return _allowed("edit", roles, status)


def can_submit(roles: FrozenSet[Role], status: ExpenseStatus) -> bool:
    return _allowed("submit", roles, status)


def can_approve(roles: FrozenSet[Role], status: ExpenseStatus) -> bool:
    return _allowed("approve", roles, status)


def can_reject(roles: FrozenSet[Role], status: ExpenseStatus) -> bool:
    return _allowed("reject", roles, status)


def can_mark_paid(roles: FrozenSet[Role], status: ExpenseStatus) -> bool:
    return _allowed("mark_paid", roles, status)


def can_annul(roles: FrozenSet[Role], status: ExpenseStatus) -> bool:
    return _allowed("annul", roles, status)


def can_delete(roles: FrozenSet[Role], status: ExpenseStatus) -> bool:
    return _allowed("delete", roles, status)


def can_manage_treasury(roles: FrozenSet[Role], status: Optional[ExpenseStatus] = None) -> bool:
    return _allowed("manage_treasury", roles, status)


def require(action: str, actor: Actor, owner: Optional[str] = None) -> None:
    """Raise `Unauthorized` unless the actor's roles permit `action`.

    Status legality is the state machine's job; this only checks roles and,
    for collaborators acting on someone else's expense, ownership.
    """
    rule = RULES[action]
    if not actor.has_any(rule.roles):
        raise Unauthorized(action, [r.value for r in rule.roles])
    if (
        rule.owner_only_for_collaborator
        and owner is not None
        and owner != actor.user_id
        and not actor.has_any(UNRESTRICTED)
    ):
        raise Unauthorized(
            action,
            [r.value for r in UNRESTRICTED],
            reason=f"action '{action}' on another user's expense requires responsable or admin",
        )
