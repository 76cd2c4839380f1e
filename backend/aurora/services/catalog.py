from __future__ import annotations
import json
import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence

from sqlalchemy import select, func
from sqlalchemy.orm import Session

from . import storage_guard
from ..errors import ConflictError, NotFound, ValidationError
from ..models import Question, QuestionType, Quiz, QuizRoom, Role
from ..permissions import Caller, ensure_can_manage, ensure_role

logger = logging.getLogger(__name__)

TRUE_FALSE_CHOICES = ["True", "False"]

_CHOICE_TYPES = {QuestionType.MCQ.value, QuestionType.MCQ_INDEX.value, QuestionType.TRUE_FALSE.value}


def _clean_question(raw: Mapping[str, Any], position: int) -> Dict[str, Any]:
	label = f"question {position + 1}"
	qtype = str(raw.get("type") or QuestionType.MCQ.value).upper()
	if qtype not in {t.value for t in QuestionType}:
		raise ValidationError(f"{label}: unknown type {qtype}")
	prompt = str(raw.get("prompt") or "").strip()
	if not prompt:
		raise ValidationError(f"{label}: prompt is required")
	choices = [str(c) for c in (raw.get("choices") or [])]
	if qtype == QuestionType.TRUE_FALSE.value and not choices:
		choices = list(TRUE_FALSE_CHOICES)
	correct = raw.get("correct_answer")
	if correct is None or (isinstance(correct, str) and correct == ""):
		raise ValidationError(f"{label}: correct_answer is required")

	if qtype in _CHOICE_TYPES:
		if len(choices) < 2:
			raise ValidationError(f"{label}: at least two choices are required")
		if len(set(choices)) != len(choices):
			raise ValidationError(f"{label}: choices must be distinct")
	if qtype == QuestionType.MCQ_INDEX.value:
		if isinstance(correct, bool) or not (isinstance(correct, int) or (str(correct).isascii() and str(correct).isdigit())):
			raise ValidationError(f"{label}: correct_answer must be a choice index")
		if not 0 <= int(correct) < len(choices):
			raise ValidationError(f"{label}: correct_answer index out of range")
		correct = str(int(correct))
	elif qtype in _CHOICE_TYPES:
		correct = str(correct)
		if correct not in choices:
			raise ValidationError(f"{label}: correct_answer must be one of the choices")
	else:
		correct = str(correct)

	return {
		"position": position,
		"type": qtype,
		"prompt": prompt,
		"choices_json": json.dumps(choices),
		"correct_answer": correct,
	}


def _clean_questions(questions: Sequence[Mapping[str, Any]]) -> List[Dict[str, Any]]:
	if not questions:
		raise ValidationError("a quiz needs at least one question")
	return [_clean_question(q, i) for i, q in enumerate(questions)]


def load_quiz(db: Session, quiz_id: int) -> Quiz:
	quiz = db.get(Quiz, quiz_id)
	if quiz is None:
		raise NotFound("quiz not found")
	return quiz


def is_referenced(db: Session, quiz_id: int) -> bool:
	count = db.scalar(select(func.count()).select_from(QuizRoom).where(QuizRoom.quiz_id == quiz_id))
	return bool(count)


def question_view(question: Question, *, with_answer_key: bool) -> Dict[str, Any]:
	view: Dict[str, Any] = {
		"id": question.id,
		"position": question.position,
		"type": question.type,
		"prompt": question.prompt,
		"choices": question.choices,
	}
	if with_answer_key:
		view["correct_answer"] = question.correct_answer
	return view


def quiz_view(quiz: Quiz, *, with_answer_key: bool) -> Dict[str, Any]:
	return {
		"id": quiz.id,
		"owner_id": quiz.owner_id,
		"title": quiz.title,
		"topic": quiz.topic,
		"difficulty": quiz.difficulty,
		"questions": [question_view(q, with_answer_key=with_answer_key) for q in quiz.questions],
	}


def get_quiz_with_answer_key(db: Session, quiz_id: int) -> Dict[str, Any]:
	return quiz_view(load_quiz(db, quiz_id), with_answer_key=True)


def get_quiz_without_answer_key(db: Session, quiz_id: int) -> Dict[str, Any]:
	return quiz_view(load_quiz(db, quiz_id), with_answer_key=False)


@storage_guard
def create_quiz(
	db: Session,
	caller: Caller,
	title: str,
	questions: Sequence[Mapping[str, Any]],
	*,
	topic: Optional[str] = None,
	difficulty: Optional[str] = None,
) -> Quiz:
	ensure_role(caller, Role.LECTURER)
	title = (title or "").strip()
	if not title:
		raise ValidationError("title is required")
	cleaned = _clean_questions(questions)
	quiz = Quiz(owner_id=caller.user_id, title=title, topic=topic, difficulty=difficulty)
	quiz.questions = [Question(**q) for q in cleaned]
	db.add(quiz)
	db.commit()
	logger.info("quiz %s created by %s with %d questions", quiz.id, caller.user_id, len(cleaned))
	return quiz


def list_owned_quizzes(db: Session, caller: Caller) -> List[Quiz]:
	stmt = select(Quiz).where(Quiz.owner_id == caller.user_id).order_by(Quiz.created_at.desc(), Quiz.id.desc())
	return list(db.scalars(stmt))


@storage_guard
def replace_questions(db: Session, quiz_id: int, caller: Caller, questions: Sequence[Mapping[str, Any]]) -> Quiz:
	quiz = load_quiz(db, quiz_id)
	ensure_can_manage(caller, quiz.owner_id, "quiz")
	# Grading reads the live answer key, so a quiz in use by a room is frozen
	if is_referenced(db, quiz_id):
		raise ConflictError("quiz is used by a room and can no longer be edited")
	cleaned = _clean_questions(questions)
	quiz.questions.clear()
	db.flush()
	quiz.questions.extend(Question(**q) for q in cleaned)
	db.commit()
	return quiz


@storage_guard
def delete_quiz(db: Session, quiz_id: int, caller: Caller) -> None:
	quiz = load_quiz(db, quiz_id)
	ensure_can_manage(caller, quiz.owner_id, "quiz")
	if is_referenced(db, quiz_id):
		raise ConflictError("quiz is used by a room and cannot be deleted")
	db.delete(quiz)
	db.commit()
	logger.info("quiz %s deleted by %s", quiz_id, caller.user_id)
