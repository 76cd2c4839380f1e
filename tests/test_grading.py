from types import SimpleNamespace

import pytest

from aurora.services.grading import grade, is_correct


def q(qid, correct, qtype="MCQ"):
	return SimpleNamespace(id=qid, type=qtype, correct_answer=correct)


QUESTIONS = [q(1, "A"), q(2, "B"), q(3, "C")]


def test_scores_each_question_in_quiz_order():
	answers = [
		{"question_id": 3, "selected_answer": "C"},
		{"question_id": 1, "selected_answer": "A"},
		{"question_id": 2, "selected_answer": "X"},
	]
	result = grade(QUESTIONS, answers)
	assert result.score == 2
	assert result.total == 3
	assert [(r.question_id, r.is_correct) for r in result.responses] == [(1, True), (2, False), (3, True)]


def test_unanswered_questions_are_graded_incorrect_with_empty_selection():
	result = grade(QUESTIONS, [{"question_id": 1, "selected_answer": "A"}])
	assert result.score == 1
	assert result.total == 3
	assert result.responses[1].selected_answer == ""
	assert result.responses[1].is_correct is False


def test_comparison_is_case_sensitive():
	result = grade([q(1, "Paris", "SHORT")], [{"question_id": 1, "selected_answer": "paris"}])
	assert result.score == 0


def test_first_answer_for_a_question_wins_and_unknown_ids_are_ignored():
	answers = [
		{"question_id": 1, "selected_answer": "A"},
		{"question_id": 1, "selected_answer": "X"},
		{"question_id": 99, "selected_answer": "A"},
	]
	result = grade([q(1, "A")], answers)
	assert result.score == 1
	assert result.total == 1


def test_index_questions_compare_by_index():
	question = q(1, "2", "MCQ_INDEX")
	assert is_correct(question.type, 2, question.correct_answer)
	assert is_correct(question.type, "2", question.correct_answer)
	assert not is_correct(question.type, 1, question.correct_answer)
	assert not is_correct(question.type, "two", question.correct_answer)
	assert not is_correct(question.type, True, "1")


def test_index_answers_must_be_ascii_digits():
	# str.isdigit accepts these but int() does not
	for selected in ["²", "١", "½", " 1"]:
		assert not is_correct("MCQ_INDEX", selected, "1")
	result = grade([q(1, "1", "MCQ_INDEX")], [{"question_id": 1, "selected_answer": "²"}])
	assert (result.score, result.total) == (0, 1)
	assert result.responses[0].selected_answer == "²"


def test_text_questions_do_not_accept_index_answers():
	assert not is_correct("MCQ", 0, "A")


def test_grading_is_deterministic():
	answers = [{"question_id": 1, "selected_answer": "A"}, {"question_id": 2, "selected_answer": "B"}]
	first = grade(QUESTIONS, answers)
	second = grade(QUESTIONS, answers)
	assert first.score == second.score == 2
	assert [r.as_dict() for r in first.responses] == [r.as_dict() for r in second.responses]


def test_unknown_question_type_is_rejected():
	with pytest.raises(ValueError):
		is_correct("ESSAY", "x", "x")
