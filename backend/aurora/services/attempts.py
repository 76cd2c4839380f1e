"""Attempt lifecycle: start or resume, grade on submit, finalize exactly once.

An attempt is IN_PROGRESS while ``finalized_at`` is null and FINALIZED once it
is set. Nothing moves an attempt out of FINALIZED, and nothing expires an
abandoned IN_PROGRESS attempt: after its time limit it can only fail to submit.
"""

from __future__ import annotations
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Mapping, Optional, Sequence

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from . import storage_guard
from .catalog import get_quiz_without_answer_key, load_quiz
from .grading import GradedResponse, grade
from .rooms import can_view, check_window, load_room
from ..errors import (
	AlreadySubmitted,
	AttemptLimitReached,
	ConflictError,
	Forbidden,
	Locked,
	NotFound,
	TimeExpired,
)
from ..models import Attempt, QuizRoom, Role, utcnow
from ..permissions import Caller, can_manage, ensure_role

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class StartResult:
	attempt: Attempt
	quiz: Dict[str, Any]
	deadline: Optional[datetime]
	resumed: bool = False


@dataclass(slots=True)
class SubmitResult:
	attempt_id: int
	score: int
	total: int
	responses: List[GradedResponse] = field(default_factory=list)


def deadline_for(room: QuizRoom, attempt: Attempt) -> Optional[datetime]:
	if not room.time_limit_minutes:
		return None
	return attempt.started_at + timedelta(minutes=room.time_limit_minutes)


def _find_in_progress(db: Session, room_id: int, user_id: str) -> Optional[Attempt]:
	stmt = select(Attempt).where(
		Attempt.room_id == room_id,
		Attempt.user_id == user_id,
		Attempt.finalized_at.is_(None),
	)
	return db.scalar(stmt)


def _count_attempts(db: Session, room_id: int, user_id: str, *, finalized_only: bool) -> int:
	stmt = select(func.count()).select_from(Attempt).where(Attempt.room_id == room_id, Attempt.user_id == user_id)
	if finalized_only:
		stmt = stmt.where(Attempt.finalized_at.is_not(None))
	return db.scalar(stmt) or 0


def _resume(room: QuizRoom, attempt: Attempt, quiz: Dict[str, Any]) -> StartResult:
	logger.info("attempt %s resumed by %s", attempt.id, attempt.user_id)
	return StartResult(attempt=attempt, quiz=quiz, deadline=deadline_for(room, attempt), resumed=True)


@storage_guard
def start(db: Session, room_id: int, caller: Caller, now: Optional[datetime] = None) -> StartResult:
	ensure_role(caller, Role.STUDENT)
	now = now or utcnow()
	room = load_room(db, room_id)
	if not room.is_active:
		raise Locked("room is locked")
	check_window(room, now)
	if not can_view(db, room, caller):
		raise Forbidden("join this room with its code first")

	quiz = get_quiz_without_answer_key(db, room.quiz_id)

	existing = _find_in_progress(db, room.id, caller.user_id)
	if existing is not None:
		return _resume(room, existing, quiz)

	finalized = _count_attempts(db, room.id, caller.user_id, finalized_only=True)
	if finalized >= room.max_attempts_per_user:
		raise AttemptLimitReached(f"maximum attempts reached ({room.max_attempts_per_user})")

	prior = _count_attempts(db, room.id, caller.user_id, finalized_only=False)
	attempt = Attempt(
		room_id=room.id,
		user_id=caller.user_id,
		attempt_number=prior + 1,
		responses_json="[]",
		score=0,
		started_at=now,
		finalized_at=None,
	)
	db.add(attempt)
	try:
		db.commit()
	except IntegrityError as exc:
		# Lost a race with a concurrent start for the same (room, user)
		db.rollback()
		existing = _find_in_progress(db, room.id, caller.user_id)
		if existing is not None:
			return _resume(room, existing, quiz)
		raise ConflictError("another attempt was started at the same time, try again") from exc

	logger.info("attempt %s (#%d) started by %s in room %s", attempt.id, attempt.attempt_number, caller.user_id, room.id)
	return StartResult(attempt=attempt, quiz=quiz, deadline=deadline_for(room, attempt))


@storage_guard
def submit(
	db: Session,
	attempt_id: int,
	caller: Caller,
	answers: Sequence[Mapping[str, Any]],
	now: Optional[datetime] = None,
) -> SubmitResult:
	now = now or utcnow()
	attempt = db.get(Attempt, attempt_id)
	if attempt is None:
		raise NotFound("attempt not found")
	if attempt.user_id != caller.user_id:
		raise Forbidden("only the student who started this attempt may submit it")
	if attempt.finalized_at is not None:
		raise AlreadySubmitted("attempt already submitted")

	room = load_room(db, attempt.room_id)
	if not room.is_active:
		raise Locked("room is locked")
	deadline = deadline_for(room, attempt)
	if deadline is not None and now > deadline:
		raise TimeExpired("time limit expired")

	quiz = load_quiz(db, room.quiz_id)
	result = grade(quiz.questions, answers)

	# Compare-and-set on finalized_at: only one submission can win
	stmt = (
		update(Attempt)
		.where(Attempt.id == attempt.id, Attempt.finalized_at.is_(None))
		.values(
			responses_json=json.dumps([r.as_dict() for r in result.responses]),
			score=result.score,
			finalized_at=now,
		)
		.execution_options(synchronize_session=False)
	)
	res = db.execute(stmt)
	if res.rowcount != 1:
		db.rollback()
		raise AlreadySubmitted("attempt already submitted")
	db.commit()
	db.refresh(attempt)

	logger.info("attempt %s finalized by %s: %d/%d", attempt.id, caller.user_id, result.score, result.total)
	return SubmitResult(attempt_id=attempt.id, score=result.score, total=result.total, responses=result.responses)


def list_my_attempts(db: Session, caller: Caller) -> List[Attempt]:
	stmt = select(Attempt).where(Attempt.user_id == caller.user_id).order_by(Attempt.started_at.desc(), Attempt.id.desc())
	return list(db.scalars(stmt))


def get_attempt(db: Session, attempt_id: int, caller: Caller) -> Attempt:
	attempt = db.get(Attempt, attempt_id)
	if attempt is None:
		raise NotFound("attempt not found")
	if attempt.user_id != caller.user_id:
		room = load_room(db, attempt.room_id)
		if not can_manage(caller, room.owner_id):
			raise Forbidden("not your attempt")
	return attempt
