import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from aurora.errors import (
	AlreadySubmitted,
	AttemptLimitReached,
	ConflictError,
	Forbidden,
	Locked,
	NotFound,
	TimeExpired,
	TooEarly,
	TooLate,
)
from aurora.models import Attempt, AttemptState
from aurora.services import attempts, catalog, rooms

from conftest import hours, now


def answers_for(quiz, selections):
	return [{"question_id": q.id, "selected_answer": s} for q, s in zip(quiz.questions, selections)]


def test_start_creates_first_attempt_without_answer_key(db, make_room, student):
	room = make_room(time_limit_minutes=30)
	result = attempts.start(db, room.id, student)
	attempt = result.attempt
	assert attempt.attempt_number == 1
	assert attempt.state is AttemptState.IN_PROGRESS
	assert attempt.score == 0
	assert attempt.responses == []
	assert result.resumed is False
	assert result.deadline == attempt.started_at + timedelta(minutes=30)
	assert len(result.quiz["questions"]) == 3
	assert all("correct_answer" not in q for q in result.quiz["questions"])


def test_untimed_room_has_no_deadline(db, make_room, student):
	result = attempts.start(db, make_room().id, student)
	assert result.deadline is None


def test_start_resumes_in_progress_attempt(db, make_room, student):
	room = make_room(max_attempts_per_user=3)
	first = attempts.start(db, room.id, student)
	again = attempts.start(db, room.id, student)
	assert again.resumed is True
	assert again.attempt.id == first.attempt.id
	assert db.scalar(select(func.count()).select_from(Attempt)) == 1


def test_start_checks_room_state(db, make_room, lecturer, student):
	t = now()
	with pytest.raises(NotFound):
		attempts.start(db, 999, student)
	locked = make_room()
	rooms.toggle_active(db, locked.id, lecturer)
	with pytest.raises(Locked):
		attempts.start(db, locked.id, student)
	with pytest.raises(TooEarly):
		attempts.start(db, make_room(opens_at=t + hours(1)).id, student)
	with pytest.raises(TooLate):
		attempts.start(db, make_room(closes_at=t - hours(1)).id, student)


def test_private_room_requires_join(db, make_room, student):
	room = make_room(visibility="PRIVATE")
	with pytest.raises(Forbidden):
		attempts.start(db, room.id, student)
	rooms.join_by_code(db, room.join_code, student)
	assert attempts.start(db, room.id, student).attempt.room_id == room.id


def test_submit_grades_against_the_key(db, make_room, quiz, student):
	room = make_room()
	attempt = attempts.start(db, room.id, student).attempt
	result = attempts.submit(db, attempt.id, student, answers_for(quiz, ["A", "X", "C"]))
	assert (result.score, result.total) == (2, 3)
	assert [r.is_correct for r in result.responses] == [True, False, True]

	stored = db.get(Attempt, attempt.id)
	assert stored.state is AttemptState.FINALIZED
	assert stored.score == 2
	assert [r["is_correct"] for r in stored.responses] == [True, False, True]


def test_second_submit_is_rejected_and_keeps_the_first_grade(db, make_room, quiz, student):
	room = make_room()
	attempt = attempts.start(db, room.id, student).attempt
	attempts.submit(db, attempt.id, student, answers_for(quiz, ["A", "X", "C"]))
	with pytest.raises(AlreadySubmitted):
		attempts.submit(db, attempt.id, student, answers_for(quiz, ["A", "B", "C"]))
	assert db.get(Attempt, attempt.id).score == 2


def test_concurrent_submit_loses_the_compare_and_set(session_factory, db, make_room, quiz, student):
	room = make_room()
	attempt = attempts.start(db, room.id, student).attempt

	# A second request finalizes the attempt while this session still holds
	# the stale in-progress copy.
	other = session_factory()
	try:
		attempts.submit(other, attempt.id, student, answers_for(quiz, ["A", "B", "C"]))
	finally:
		other.close()

	assert db.get(Attempt, attempt.id).finalized_at is None
	with pytest.raises(AlreadySubmitted):
		attempts.submit(db, attempt.id, student, answers_for(quiz, ["X", "X", "X"]))
	db.expire_all()
	assert db.get(Attempt, attempt.id).score == 3


def test_only_owner_submits(db, make_room, quiz, student, other_student):
	attempt = attempts.start(db, make_room().id, student).attempt
	with pytest.raises(Forbidden):
		attempts.submit(db, attempt.id, other_student, [])
	with pytest.raises(NotFound):
		attempts.submit(db, 4242, student, [])


def test_submit_after_time_limit_expires(db, make_room, student):
	room = make_room(time_limit_minutes=30)
	attempt = attempts.start(db, room.id, student).attempt
	late = attempt.started_at + timedelta(minutes=31)
	with pytest.raises(TimeExpired):
		attempts.submit(db, attempt.id, student, [], now=late)
	# Abandoned attempts stay in progress
	assert db.get(Attempt, attempt.id).state is AttemptState.IN_PROGRESS


def test_submit_on_locked_room(db, make_room, lecturer, student):
	room = make_room()
	attempt = attempts.start(db, room.id, student).attempt
	rooms.toggle_active(db, room.id, lecturer)
	with pytest.raises(Locked):
		attempts.submit(db, attempt.id, student, [])


def test_attempt_limit(db, make_room, quiz, student):
	room = make_room(max_attempts_per_user=1)
	attempt = attempts.start(db, room.id, student).attempt
	attempts.submit(db, attempt.id, student, answers_for(quiz, ["A", "B", "C"]))
	with pytest.raises(AttemptLimitReached):
		attempts.start(db, room.id, student)


def test_attempt_numbers_increase(db, make_room, quiz, student):
	room = make_room(max_attempts_per_user=2)
	first = attempts.start(db, room.id, student).attempt
	attempts.submit(db, first.id, student, [])
	second = attempts.start(db, room.id, student).attempt
	assert second.attempt_number == 2
	attempts.submit(db, second.id, student, [])
	with pytest.raises(AttemptLimitReached):
		attempts.start(db, room.id, student)
	finalized = db.scalar(select(func.count()).select_from(Attempt).where(Attempt.finalized_at.is_not(None)))
	assert finalized == 2


def test_storage_allows_one_in_progress_attempt(db, make_room, student):
	room = make_room(max_attempts_per_user=5)
	attempts.start(db, room.id, student)
	db.add(Attempt(room_id=room.id, user_id=student.user_id, attempt_number=2, started_at=now()))
	with pytest.raises(IntegrityError):
		db.commit()
	db.rollback()


def test_racing_start_resumes_the_winner(db, make_room, student, monkeypatch):
	room = make_room(max_attempts_per_user=5)
	winner = attempts.start(db, room.id, student).attempt

	real_find = attempts._find_in_progress
	calls = []

	def stale_then_real(session, room_id, user_id):
		calls.append(room_id)
		if len(calls) == 1:
			return None
		return real_find(session, room_id, user_id)

	monkeypatch.setattr(attempts, "_find_in_progress", stale_then_real)
	result = attempts.start(db, room.id, student)
	assert result.resumed is True
	assert result.attempt.id == winner.id
	in_progress = db.scalar(select(func.count()).select_from(Attempt).where(Attempt.finalized_at.is_(None)))
	assert in_progress == 1


def test_attempt_visibility(db, make_room, lecturer, student, other_student):
	attempt = attempts.start(db, make_room().id, student).attempt
	assert attempts.get_attempt(db, attempt.id, student).id == attempt.id
	assert attempts.get_attempt(db, attempt.id, lecturer).id == attempt.id
	with pytest.raises(Forbidden):
		attempts.get_attempt(db, attempt.id, other_student)
	assert [a.id for a in attempts.list_my_attempts(db, student)] == [attempt.id]
	assert attempts.list_my_attempts(db, other_student) == []


def test_concurrent_starts_leave_one_in_progress_attempt(session_factory, make_room, student):
	room_id = make_room(max_attempts_per_user=3).id
	workers = 6
	barrier = threading.Barrier(workers)

	def start_in_own_session():
		session = session_factory()
		try:
			barrier.wait(timeout=10)
			try:
				return attempts.start(session, room_id, student).attempt.id
			except ConflictError:
				return None
		finally:
			session.close()

	with ThreadPoolExecutor(max_workers=workers) as pool:
		ids = list(pool.map(lambda _: start_in_own_session(), range(workers)))

	started = {i for i in ids if i is not None}
	assert len(started) == 1
	check = session_factory()
	try:
		in_progress = check.scalars(
			select(Attempt).where(Attempt.room_id == room_id, Attempt.finalized_at.is_(None))
		).all()
		assert [a.id for a in in_progress] == list(started)
		assert in_progress[0].attempt_number == 1
	finally:
		check.close()


def test_index_submission_with_non_ascii_digit_is_graded_wrong(db, lecturer, student):
	quiz = catalog.create_quiz(db, lecturer, "Indexes", [
		{"type": "MCQ_INDEX", "prompt": "Pick the second", "choices": ["A", "B", "C"], "correct_answer": 1},
		{"type": "MCQ_INDEX", "prompt": "Pick the third", "choices": ["A", "B", "C"], "correct_answer": "2"},
	])
	room = rooms.create_room(db, lecturer, quiz.id)
	attempt = attempts.start(db, room.id, student).attempt
	result = attempts.submit(db, attempt.id, student, answers_for(quiz, ["²", "2"]))
	assert (result.score, result.total) == (1, 2)
	assert [r.is_correct for r in result.responses] == [False, True]
	assert db.get(Attempt, attempt.id).state is AttemptState.FINALIZED
