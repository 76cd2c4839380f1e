"""Read-time ranking of finalized attempts for a room."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import List

from sqlalchemy import select
from sqlalchemy.orm import Session

from .rooms import can_view, load_room
from ..errors import Forbidden
from ..models import Attempt
from ..permissions import Caller


@dataclass(slots=True)
class LeaderboardRow:
	rank: int
	user_id: str
	attempt_id: int
	attempt_number: int
	score: int
	finalized_at: datetime


def sort_key(attempt: Attempt):
	# Higher score first, earlier finish breaks ties, id keeps it reproducible
	return (-attempt.score, attempt.finalized_at, attempt.id)


def rank_attempts(attempts: List[Attempt]) -> List[LeaderboardRow]:
	ordered = sorted((a for a in attempts if a.finalized_at is not None), key=sort_key)
	return [
		LeaderboardRow(
			rank=position,
			user_id=a.user_id,
			attempt_id=a.id,
			attempt_number=a.attempt_number,
			score=a.score,
			finalized_at=a.finalized_at,
		)
		for position, a in enumerate(ordered, start=1)
	]


def rank(db: Session, room_id: int) -> List[LeaderboardRow]:
	stmt = select(Attempt).where(Attempt.room_id == room_id, Attempt.finalized_at.is_not(None))
	return rank_attempts(list(db.scalars(stmt)))


def leaderboard_for(db: Session, room_id: int, caller: Caller) -> List[LeaderboardRow]:
	room = load_room(db, room_id)
	if not can_view(db, room, caller):
		has_attempt = db.scalar(
			select(Attempt.id).where(Attempt.room_id == room.id, Attempt.user_id == caller.user_id).limit(1)
		)
		if has_attempt is None:
			raise Forbidden("not allowed to view this leaderboard")
	return rank(db, room.id)
