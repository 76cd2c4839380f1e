from __future__ import annotations
from typing import Any, Dict, List, Union

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from ..db import get_db
from ..models import Attempt
from ..permissions import Caller
from ..services import attempts
from ..services.rooms import load_room
from .auth import get_current_user


router = APIRouter(prefix="/attempts", tags=["attempts"])


class AnswerIn(BaseModel):
	question_id: int
	selected_answer: Union[int, str] = ""


class SubmitRequest(BaseModel):
	answers: List[AnswerIn] = Field(default_factory=list)


class ResponseOut(BaseModel):
	question_id: int
	selected_answer: str
	is_correct: bool


class SubmitResponse(BaseModel):
	attempt_id: int
	score: int
	total: int
	responses: List[ResponseOut]


def _attempt_view(attempt: Attempt, deadline) -> Dict[str, Any]:
	responses = attempt.responses
	return {
		"id": attempt.id,
		"room_id": attempt.room_id,
		"user_id": attempt.user_id,
		"attempt_number": attempt.attempt_number,
		"state": attempt.state.value,
		"score": attempt.score,
		"total": len(responses) if attempt.finalized_at is not None else None,
		"started_at": attempt.started_at,
		"finalized_at": attempt.finalized_at,
		"deadline": deadline,
		"responses": responses,
	}


@router.post("/{attempt_id}/submit", response_model=SubmitResponse)
def submit_attempt(
	attempt_id: int,
	req: SubmitRequest,
	user: Caller = Depends(get_current_user),
	db: Session = Depends(get_db),
):
	result = attempts.submit(db, attempt_id, user, [a.model_dump() for a in req.answers])
	return SubmitResponse(
		attempt_id=result.attempt_id,
		score=result.score,
		total=result.total,
		responses=[ResponseOut(**r.as_dict()) for r in result.responses],
	)


@router.get("/mine")
def my_attempts(user: Caller = Depends(get_current_user), db: Session = Depends(get_db)):
	rows = attempts.list_my_attempts(db, user)
	return {"data": [_attempt_view(a, None) for a in rows]}


@router.get("/{attempt_id}")
def get_attempt(attempt_id: int, user: Caller = Depends(get_current_user), db: Session = Depends(get_db)):
	attempt = attempts.get_attempt(db, attempt_id, user)
	room = load_room(db, attempt.room_id)
	return _attempt_view(attempt, attempts.deadline_for(room, attempt))
