"""Shared fixtures: a throwaway SQLite database per test and small builders."""

from datetime import timedelta

import pytest

from aurora import models  # noqa: F401  registers tables on Base.metadata
from aurora.db import Base, build_engine, build_session_factory
from aurora.models import AuthUser, Role, utcnow
from aurora.permissions import Caller
from aurora.services import catalog, rooms


@pytest.fixture
def session_factory(tmp_path):
	engine = build_engine(f"sqlite:///{tmp_path / 'test.db'}")
	Base.metadata.create_all(bind=engine)
	yield build_session_factory(engine)
	engine.dispose()


@pytest.fixture
def db(session_factory):
	session = session_factory()
	yield session
	session.close()


def add_user(db, username, *roles):
	roles = roles or (Role.STUDENT.value,)
	db.add(AuthUser(username=username, password_hash="x", roles=",".join(roles)))
	db.commit()
	return Caller(user_id=username, roles=frozenset(roles))


@pytest.fixture
def lecturer(db):
	return add_user(db, "lena", Role.LECTURER.value)


@pytest.fixture
def student(db):
	return add_user(db, "sam", Role.STUDENT.value)


@pytest.fixture
def other_student(db):
	return add_user(db, "olga", Role.STUDENT.value)


@pytest.fixture
def admin(db):
	return add_user(db, "root", Role.ADMIN.value)


ABC_QUESTIONS = [
	{"type": "MCQ", "prompt": "First letter?", "choices": ["A", "X"], "correct_answer": "A"},
	{"type": "MCQ", "prompt": "Second letter?", "choices": ["B", "X"], "correct_answer": "B"},
	{"type": "MCQ", "prompt": "Third letter?", "choices": ["C", "X"], "correct_answer": "C"},
]


@pytest.fixture
def quiz(db, lecturer):
	return catalog.create_quiz(db, lecturer, "Alphabet", ABC_QUESTIONS, topic="letters")


@pytest.fixture
def make_room(db, lecturer, quiz):
	def _make(**kwargs):
		return rooms.create_room(db, lecturer, quiz.id, **kwargs)
	return _make


def hours(n):
	return timedelta(hours=n)


def now():
	return utcnow()
