from __future__ import annotations
from typing import Any, Dict, List, Optional, Union

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from ..db import get_db
from ..models import QuestionType, Role
from ..permissions import Caller, can_manage
from ..services import catalog
from .auth import get_current_user, require_roles


router = APIRouter(prefix="/quizzes", tags=["quizzes"])


class QuestionIn(BaseModel):
	type: QuestionType = QuestionType.MCQ
	prompt: str
	choices: List[str] = Field(default_factory=list)
	# Choice text, or a 0-based index for MCQ_INDEX
	correct_answer: Union[int, str]


class QuizCreateRequest(BaseModel):
	title: str
	topic: Optional[str] = None
	difficulty: Optional[str] = None
	questions: List[QuestionIn]


class QuestionsReplaceRequest(BaseModel):
	questions: List[QuestionIn]


def _as_dicts(questions: List[QuestionIn]) -> List[Dict[str, Any]]:
	return [q.model_dump(mode="json") for q in questions]


@router.post("", status_code=201)
def create_quiz(
	req: QuizCreateRequest,
	user: Caller = Depends(require_roles(Role.LECTURER)),
	db: Session = Depends(get_db),
):
	quiz = catalog.create_quiz(db, user, req.title, _as_dicts(req.questions), topic=req.topic, difficulty=req.difficulty)
	return catalog.quiz_view(quiz, with_answer_key=True)


@router.get("/mine")
def my_quizzes(user: Caller = Depends(get_current_user), db: Session = Depends(get_db)):
	quizzes = catalog.list_owned_quizzes(db, user)
	return {"data": [catalog.quiz_view(q, with_answer_key=True) for q in quizzes]}


@router.get("/{quiz_id}")
def get_quiz(quiz_id: int, user: Caller = Depends(get_current_user), db: Session = Depends(get_db)):
	quiz = catalog.load_quiz(db, quiz_id)
	return catalog.quiz_view(quiz, with_answer_key=can_manage(user, quiz.owner_id))


@router.put("/{quiz_id}/questions")
def replace_questions(
	quiz_id: int,
	req: QuestionsReplaceRequest,
	user: Caller = Depends(get_current_user),
	db: Session = Depends(get_db),
):
	quiz = catalog.replace_questions(db, quiz_id, user, _as_dicts(req.questions))
	return catalog.quiz_view(quiz, with_answer_key=True)


@router.delete("/{quiz_id}", status_code=204)
def delete_quiz(quiz_id: int, user: Caller = Depends(get_current_user), db: Session = Depends(get_db)):
	catalog.delete_quiz(db, quiz_id, user)
