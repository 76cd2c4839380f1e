"""Server-side grading of a submission against a quiz's answer key."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

from ..models import QuestionType


@dataclass(slots=True)
class GradedResponse:
	question_id: int
	selected_answer: str
	is_correct: bool

	def as_dict(self) -> Dict[str, Any]:
		return {
			"question_id": self.question_id,
			"selected_answer": self.selected_answer,
			"is_correct": self.is_correct,
		}


@dataclass(slots=True)
class GradeResult:
	score: int
	total: int
	responses: List[GradedResponse] = field(default_factory=list)


def _as_index(value: Any) -> Optional[int]:
	if isinstance(value, bool):
		return None
	if isinstance(value, int):
		return value
	if isinstance(value, str) and value.isascii() and value.isdigit():
		return int(value)
	return None


def _text_equal(selected: Any, correct: str) -> bool:
	return isinstance(selected, str) and selected == correct


def _index_equal(selected: Any, correct: str) -> bool:
	chosen = _as_index(selected)
	return chosen is not None and chosen == _as_index(correct)


# Comparison mode is fixed per question type
_MATCHERS: Dict[str, Callable[[Any, str], bool]] = {
	QuestionType.MCQ.value: _text_equal,
	QuestionType.MCQ_INDEX.value: _index_equal,
	QuestionType.TRUE_FALSE.value: _text_equal,
	QuestionType.SHORT.value: _text_equal,
}


def is_correct(question_type: str, selected: Any, correct_answer: str) -> bool:
	try:
		matcher = _MATCHERS[question_type]
	except KeyError:
		raise ValueError(f"unknown question type: {question_type}")
	return matcher(selected, correct_answer)


def index_answers(answers: Iterable[Mapping[str, Any]]) -> Dict[int, Any]:
	"""Map question id to the selected answer; the first answer for a question wins."""
	by_question: Dict[int, Any] = {}
	for answer in answers:
		qid = answer.get("question_id")
		if qid is None or qid in by_question:
			continue
		by_question[qid] = answer.get("selected_answer", "")
	return by_question


def grade(questions: Iterable[Any], answers: Iterable[Mapping[str, Any]]) -> GradeResult:
	"""Grade in the quiz's own question order.

	Questions without a submitted answer are recorded as incorrect with an
	empty selection instead of being dropped.
	"""
	selected_by_question = index_answers(answers)
	responses: List[GradedResponse] = []
	score = 0
	for question in questions:
		selected = selected_by_question.get(question.id, "")
		if selected is None:
			selected = ""
		correct = is_correct(question.type, selected, question.correct_answer)
		if correct:
			score += 1
		responses.append(GradedResponse(question_id=question.id, selected_answer=str(selected), is_correct=correct))
	return GradeResult(score=score, total=len(responses), responses=responses)
