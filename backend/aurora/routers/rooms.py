from __future__ import annotations
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from ..db import get_db
from ..models import Role, Visibility
from ..permissions import Caller
from ..services import attempts, leaderboard, rooms
from ..settings import Settings, get_settings
from .auth import get_current_user, require_roles


router = APIRouter(prefix="/rooms", tags=["rooms"])


class RoomCreateRequest(BaseModel):
	quiz_id: int
	time_limit_minutes: Optional[int] = None
	max_attempts_per_user: Optional[int] = None
	opens_at: Optional[datetime] = None
	closes_at: Optional[datetime] = None
	visibility: Visibility = Visibility.PUBLIC


class RoomOut(BaseModel):
	model_config = ConfigDict(from_attributes=True)

	id: int
	quiz_id: int
	owner_id: str
	join_code: str
	time_limit_minutes: Optional[int] = None
	max_attempts_per_user: int
	opens_at: Optional[datetime] = None
	closes_at: Optional[datetime] = None
	is_active: bool
	visibility: str


class JoinRequest(BaseModel):
	code: str = Field(min_length=1)


class AttemptOut(BaseModel):
	model_config = ConfigDict(from_attributes=True)

	id: int
	room_id: int
	user_id: str
	attempt_number: int
	score: int
	started_at: datetime
	finalized_at: Optional[datetime] = None


class StartResponse(BaseModel):
	attempt: AttemptOut
	quiz: Dict[str, Any]
	deadline: Optional[datetime] = None
	resumed: bool


class LeaderboardEntry(BaseModel):
	rank: int
	user_id: str
	attempt_id: int
	attempt_number: int
	score: int
	finalized_at: datetime


@router.post("", status_code=201, response_model=RoomOut)
def create_room(
	req: RoomCreateRequest,
	user: Caller = Depends(require_roles(Role.LECTURER)),
	db: Session = Depends(get_db),
	config: Settings = Depends(get_settings),
):
	max_attempts = req.max_attempts_per_user if req.max_attempts_per_user is not None else config.default_max_attempts
	return rooms.create_room(
		db,
		user,
		req.quiz_id,
		time_limit_minutes=req.time_limit_minutes,
		max_attempts_per_user=max_attempts,
		opens_at=req.opens_at,
		closes_at=req.closes_at,
		visibility=req.visibility.value,
		code_length=config.room_code_length,
		max_retries=config.room_code_max_retries,
	)


@router.get("/available", response_model=List[RoomOut])
def available_rooms(user: Caller = Depends(get_current_user), db: Session = Depends(get_db)):
	return rooms.list_available(db, user)


@router.get("/mine", response_model=List[RoomOut])
def my_rooms(user: Caller = Depends(get_current_user), db: Session = Depends(get_db)):
	return rooms.list_owned_rooms(db, user)


@router.post("/join")
def join_room(req: JoinRequest, user: Caller = Depends(get_current_user), db: Session = Depends(get_db)):
	return {"room_id": rooms.join_by_code(db, req.code, user)}


@router.get("/{room_id}", response_model=RoomOut)
def get_room(room_id: int, user: Caller = Depends(get_current_user), db: Session = Depends(get_db)):
	return rooms.get_room(db, room_id, user)


@router.post("/{room_id}/toggle")
def toggle_room(room_id: int, user: Caller = Depends(get_current_user), db: Session = Depends(get_db)):
	return {"room_id": room_id, "is_active": rooms.toggle_active(db, room_id, user)}


@router.delete("/{room_id}", status_code=204)
def delete_room(room_id: int, user: Caller = Depends(get_current_user), db: Session = Depends(get_db)):
	rooms.delete_room(db, room_id, user)


@router.post("/{room_id}/start", response_model=StartResponse)
def start_attempt(room_id: int, user: Caller = Depends(get_current_user), db: Session = Depends(get_db)):
	result = attempts.start(db, room_id, user)
	return StartResponse(
		attempt=AttemptOut.model_validate(result.attempt),
		quiz=result.quiz,
		deadline=result.deadline,
		resumed=result.resumed,
	)


@router.get("/{room_id}/leaderboard", response_model=List[LeaderboardEntry])
def room_leaderboard(room_id: int, user: Caller = Depends(get_current_user), db: Session = Depends(get_db)):
	rows = leaderboard.leaderboard_for(db, room_id, user)
	return [
		LeaderboardEntry(
			rank=r.rank,
			user_id=r.user_id,
			attempt_id=r.attempt_id,
			attempt_number=r.attempt_number,
			score=r.score,
			finalized_at=r.finalized_at,
		)
		for r in rows
	]
