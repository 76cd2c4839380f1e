from __future__ import annotations
from typing import FrozenSet, Iterable

from pydantic import BaseModel

from .errors import Forbidden
from .models import Role


class Caller(BaseModel):
	user_id: str
	roles: FrozenSet[str] = frozenset()

	@property
	def is_admin(self) -> bool:
		return Role.ADMIN.value in self.roles


def expand_roles(roles: Iterable[str]) -> FrozenSet[str]:
	"""Admin implies every role, lecturer implies student."""
	expanded = set(roles)
	if Role.ADMIN.value in expanded:
		expanded.update(r.value for r in Role)
	if Role.LECTURER.value in expanded:
		expanded.add(Role.STUDENT.value)
	return frozenset(expanded)


def has_any_role(caller: Caller, *allowed: Role) -> bool:
	expanded = expand_roles(caller.roles)
	return any(r.value in expanded for r in allowed)


def ensure_role(caller: Caller, *allowed: Role) -> None:
	if not has_any_role(caller, *allowed):
		raise Forbidden("insufficient permissions")


def can_manage(caller: Caller, owner_id: str) -> bool:
	return caller.is_admin or caller.user_id == owner_id


def ensure_can_manage(caller: Caller, owner_id: str, what: str = "resource") -> None:
	if not can_manage(caller, owner_id):
		raise Forbidden(f"only the owner or an admin may modify this {what}")
