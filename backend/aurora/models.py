from __future__ import annotations
import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List

from sqlalchemy import (
	Boolean,
	Column,
	DateTime,
	ForeignKey,
	Index,
	Integer,
	String,
	Text,
	UniqueConstraint,
	text,
)
from sqlalchemy.orm import relationship
from .db import Base


def utcnow() -> datetime:
	# Naive UTC, matching what SQLite hands back
	return datetime.now(timezone.utc).replace(tzinfo=None)


class Role(str, Enum):
	STUDENT = "STUDENT"
	LECTURER = "LECTURER"
	ADMIN = "ADMIN"


class Visibility(str, Enum):
	PUBLIC = "PUBLIC"
	PRIVATE = "PRIVATE"


class QuestionType(str, Enum):
	MCQ = "MCQ"
	MCQ_INDEX = "MCQ_INDEX"
	TRUE_FALSE = "TRUE_FALSE"
	SHORT = "SHORT"


class AttemptState(str, Enum):
	IN_PROGRESS = "IN_PROGRESS"
	FINALIZED = "FINALIZED"


class AuthUser(Base):
	__tablename__ = "auth_users"
	# Primary key is username; it doubles as the user id everywhere else
	username = Column(String(128), primary_key=True, index=True)
	password_hash = Column(String(256), nullable=False)
	email = Column(String(256), nullable=True)
	# Comma separated Role values
	roles = Column(String(64), default=Role.STUDENT.value, nullable=False)
	requests_used = Column(Integer, default=0, nullable=False)
	requests_limit = Column(Integer, default=1000, nullable=False)
	created_at = Column(DateTime, default=utcnow, nullable=False)
	updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

	@property
	def role_set(self) -> frozenset[str]:
		return frozenset(r for r in (self.roles or "").split(",") if r)


class AuthSession(Base):
	__tablename__ = "auth_sessions"
	session_id = Column(String(64), primary_key=True)
	username = Column(String(128), ForeignKey("auth_users.username", ondelete="CASCADE"), nullable=False, index=True)
	created_at = Column(DateTime, default=utcnow, nullable=False)
	last_activity_at = Column(DateTime, default=utcnow, nullable=False)


class Quiz(Base):
	__tablename__ = "quizzes"
	id = Column(Integer, primary_key=True, autoincrement=True)
	owner_id = Column(String(128), ForeignKey("auth_users.username"), nullable=False, index=True)
	title = Column(String(256), nullable=False)
	topic = Column(String(256), nullable=True)
	difficulty = Column(String(32), nullable=True)
	created_at = Column(DateTime, default=utcnow, nullable=False)
	updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

	questions = relationship(
		"Question",
		order_by="Question.position",
		cascade="all, delete-orphan",
		passive_deletes=True,
	)


class Question(Base):
	__tablename__ = "questions"
	__table_args__ = (UniqueConstraint("quiz_id", "position", name="uq_questions_quiz_position"),)

	id = Column(Integer, primary_key=True, autoincrement=True)
	quiz_id = Column(Integer, ForeignKey("quizzes.id", ondelete="CASCADE"), nullable=False, index=True)
	position = Column(Integer, nullable=False)
	type = Column(String(16), default=QuestionType.MCQ.value, nullable=False)
	prompt = Column(Text, nullable=False)
	choices_json = Column(Text, nullable=False, default="[]")  # JSON list of strings
	correct_answer = Column(String(512), nullable=False)

	@property
	def choices(self) -> List[str]:
		return json.loads(self.choices_json or "[]")


class QuizRoom(Base):
	__tablename__ = "quiz_rooms"
	id = Column(Integer, primary_key=True, autoincrement=True)
	quiz_id = Column(Integer, ForeignKey("quizzes.id", ondelete="RESTRICT"), nullable=False, index=True)
	owner_id = Column(String(128), ForeignKey("auth_users.username"), nullable=False, index=True)
	# Always stored upper-case so lookups are case-insensitive
	join_code = Column(String(16), nullable=False, unique=True, index=True)
	time_limit_minutes = Column(Integer, nullable=True)
	max_attempts_per_user = Column(Integer, default=1, nullable=False)
	opens_at = Column(DateTime, nullable=True)
	closes_at = Column(DateTime, nullable=True)
	is_active = Column(Boolean, default=True, nullable=False)
	visibility = Column(String(16), default=Visibility.PUBLIC.value, nullable=False)
	created_at = Column(DateTime, default=utcnow, nullable=False)
	updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)


class RoomParticipant(Base):
	__tablename__ = "room_participants"
	__table_args__ = (UniqueConstraint("room_id", "user_id", name="uq_room_participants_room_user"),)

	id = Column(Integer, primary_key=True, autoincrement=True)
	room_id = Column(Integer, ForeignKey("quiz_rooms.id", ondelete="CASCADE"), nullable=False, index=True)
	user_id = Column(String(128), ForeignKey("auth_users.username"), nullable=False)
	joined_at = Column(DateTime, default=utcnow, nullable=False)


class Attempt(Base):
	__tablename__ = "attempts"
	__table_args__ = (
		UniqueConstraint("room_id", "user_id", "attempt_number", name="uq_attempts_room_user_number"),
		# At most one in-progress attempt per (room, user)
		Index(
			"uq_attempts_room_user_in_progress",
			"room_id",
			"user_id",
			unique=True,
			sqlite_where=text("finalized_at IS NULL"),
			postgresql_where=text("finalized_at IS NULL"),
		),
	)

	id = Column(Integer, primary_key=True, autoincrement=True)
	room_id = Column(Integer, ForeignKey("quiz_rooms.id", ondelete="RESTRICT"), nullable=False, index=True)
	user_id = Column(String(128), ForeignKey("auth_users.username"), nullable=False, index=True)
	attempt_number = Column(Integer, nullable=False)
	responses_json = Column(Text, nullable=False, default="[]")  # JSON list of graded responses
	score = Column(Integer, default=0, nullable=False)
	started_at = Column(DateTime, default=utcnow, nullable=False)
	finalized_at = Column(DateTime, nullable=True)

	@property
	def state(self) -> AttemptState:
		return AttemptState.IN_PROGRESS if self.finalized_at is None else AttemptState.FINALIZED

	@property
	def responses(self) -> List[Dict[str, Any]]:
		return json.loads(self.responses_json or "[]")
