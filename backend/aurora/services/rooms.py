from __future__ import annotations
import logging
import secrets
import string
from datetime import datetime, timezone
from typing import Callable, List, Optional

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from . import storage_guard
from .catalog import load_quiz
from ..errors import ConflictError, NotFound, TooEarly, TooLate, ValidationError, Forbidden
from ..models import Attempt, QuizRoom, Role, RoomParticipant, Visibility, utcnow
from ..permissions import Caller, can_manage, ensure_can_manage, ensure_role

logger = logging.getLogger(__name__)

CODE_ALPHABET = string.ascii_uppercase + string.digits


def generate_join_code(length: int = 6) -> str:
	return "".join(secrets.choice(CODE_ALPHABET) for _ in range(length))


def normalize_code(code: str) -> str:
	return (code or "").strip().upper()


def as_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
	if value is None or value.tzinfo is None:
		return value
	return value.astimezone(timezone.utc).replace(tzinfo=None)


def in_window(room: QuizRoom, now: datetime) -> bool:
	if room.opens_at is not None and now < room.opens_at:
		return False
	if room.closes_at is not None and now > room.closes_at:
		return False
	return True


def check_window(room: QuizRoom, now: datetime) -> None:
	if room.opens_at is not None and now < room.opens_at:
		raise TooEarly("room has not opened yet")
	if room.closes_at is not None and now > room.closes_at:
		raise TooLate("room has already closed")


def load_room(db: Session, room_id: int) -> QuizRoom:
	room = db.get(QuizRoom, room_id)
	if room is None:
		raise NotFound("room not found")
	return room


def is_participant(db: Session, room_id: int, user_id: str) -> bool:
	stmt = select(RoomParticipant.id).where(
		RoomParticipant.room_id == room_id,
		RoomParticipant.user_id == user_id,
	)
	return db.scalar(stmt) is not None


def can_view(db: Session, room: QuizRoom, caller: Caller) -> bool:
	if can_manage(caller, room.owner_id) or room.visibility == Visibility.PUBLIC.value:
		return True
	return is_participant(db, room.id, caller.user_id)


def _validate_settings(
	time_limit_minutes: Optional[int],
	max_attempts_per_user: int,
	opens_at: Optional[datetime],
	closes_at: Optional[datetime],
	visibility: str,
) -> None:
	if time_limit_minutes is not None and time_limit_minutes <= 0:
		raise ValidationError("time_limit_minutes must be greater than zero")
	if max_attempts_per_user is None or max_attempts_per_user < 1:
		raise ValidationError("max_attempts_per_user must be at least 1")
	if opens_at is not None and closes_at is not None and opens_at >= closes_at:
		raise ValidationError("opens_at must be before closes_at")
	if visibility not in {v.value for v in Visibility}:
		raise ValidationError(f"visibility must be one of {', '.join(v.value for v in Visibility)}")


@storage_guard
def create_room(
	db: Session,
	caller: Caller,
	quiz_id: int,
	*,
	time_limit_minutes: Optional[int] = None,
	max_attempts_per_user: int = 1,
	opens_at: Optional[datetime] = None,
	closes_at: Optional[datetime] = None,
	visibility: str = Visibility.PUBLIC.value,
	code_length: int = 6,
	max_retries: int = 5,
	code_factory: Callable[[int], str] = generate_join_code,
) -> QuizRoom:
	ensure_role(caller, Role.LECTURER)
	visibility = str(getattr(visibility, "value", visibility)).upper()
	opens_at, closes_at = as_naive_utc(opens_at), as_naive_utc(closes_at)
	_validate_settings(time_limit_minutes, max_attempts_per_user, opens_at, closes_at, visibility)
	quiz = load_quiz(db, quiz_id)
	ensure_can_manage(caller, quiz.owner_id, "quiz")

	# Lookup and insert are not atomic; the unique index on join_code is the
	# real guard and a lost race just costs one of the retries.
	for attempt in range(1, max_retries + 1):
		code = normalize_code(code_factory(code_length))
		taken = db.scalar(select(QuizRoom.id).where(QuizRoom.join_code == code))
		if taken is not None:
			logger.warning("join code collision on lookup (try %d/%d)", attempt, max_retries)
			continue
		room = QuizRoom(
			quiz_id=quiz.id,
			owner_id=caller.user_id,
			join_code=code,
			time_limit_minutes=time_limit_minutes,
			max_attempts_per_user=max_attempts_per_user,
			opens_at=opens_at,
			closes_at=closes_at,
			is_active=True,
			visibility=visibility,
		)
		db.add(room)
		try:
			db.commit()
		except IntegrityError:
			db.rollback()
			# Anything other than a join code clash (missing owner, stale quiz) is not retried
			if db.scalar(select(QuizRoom.id).where(QuizRoom.join_code == code)) is None:
				raise
			logger.warning("join code collision on insert (try %d/%d)", attempt, max_retries)
			continue
		logger.info("room %s (%s) created by %s for quiz %s", room.id, room.join_code, caller.user_id, quiz.id)
		return room
	raise ConflictError("could not allocate a unique join code, try again")


@storage_guard
def toggle_active(db: Session, room_id: int, caller: Caller) -> bool:
	room = load_room(db, room_id)
	ensure_can_manage(caller, room.owner_id, "room")
	# In-progress attempts are left alone; submit re-checks is_active
	room.is_active = not room.is_active
	db.commit()
	logger.info("room %s %s by %s", room.id, "unlocked" if room.is_active else "locked", caller.user_id)
	return room.is_active


def _add_participant(db: Session, room_id: int, user_id: str) -> None:
	if is_participant(db, room_id, user_id):
		return
	db.add(RoomParticipant(room_id=room_id, user_id=user_id))
	try:
		db.commit()
	except IntegrityError:
		# A concurrent join for the same user won the insert; joining is idempotent
		db.rollback()
		if not is_participant(db, room_id, user_id):
			raise


@storage_guard
def join_by_code(db: Session, code: str, caller: Caller, now: Optional[datetime] = None) -> int:
	code = normalize_code(code)
	if not code:
		raise ValidationError("join code is required")
	now = now or utcnow()
	room = db.scalar(select(QuizRoom).where(QuizRoom.join_code == code, QuizRoom.is_active.is_(True)))
	if room is None:
		raise NotFound("no active room with that code")
	check_window(room, now)
	if room.visibility == Visibility.PRIVATE.value:
		_add_participant(db, room.id, caller.user_id)
	logger.info("%s joined room %s", caller.user_id, room.id)
	return room.id


def list_available(db: Session, caller: Caller, now: Optional[datetime] = None) -> List[QuizRoom]:
	now = now or utcnow()
	stmt = (
		select(QuizRoom)
		.where(
			QuizRoom.visibility == Visibility.PUBLIC.value,
			QuizRoom.is_active.is_(True),
			or_(QuizRoom.opens_at.is_(None), QuizRoom.opens_at <= now),
			or_(QuizRoom.closes_at.is_(None), QuizRoom.closes_at >= now),
		)
		.order_by(QuizRoom.created_at.desc(), QuizRoom.id.desc())
	)
	return list(db.scalars(stmt))


def list_owned_rooms(db: Session, caller: Caller) -> List[QuizRoom]:
	stmt = select(QuizRoom).where(QuizRoom.owner_id == caller.user_id).order_by(QuizRoom.id.desc())
	return list(db.scalars(stmt))


def get_room(db: Session, room_id: int, caller: Caller) -> QuizRoom:
	room = load_room(db, room_id)
	if not can_view(db, room, caller):
		raise Forbidden("join this room with its code first")
	return room


@storage_guard
def delete_room(db: Session, room_id: int, caller: Caller) -> None:
	room = load_room(db, room_id)
	ensure_can_manage(caller, room.owner_id, "room")
	attempts = db.scalar(select(func.count()).select_from(Attempt).where(Attempt.room_id == room.id))
	if attempts:
		raise ConflictError("room has recorded attempts and cannot be deleted")
	db.delete(room)
	try:
		db.commit()
	except IntegrityError as exc:
		# An attempt was started between the count and the delete
		db.rollback()
		raise ConflictError("room has recorded attempts and cannot be deleted") from exc
	logger.info("room %s deleted by %s", room_id, caller.user_id)
