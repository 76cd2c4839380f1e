from typing import Optional
import logging

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from ..db import get_db
from ..errors import NotConfigured, RateLimited, UpstreamError, ValidationError
from ..gemini_client import GeminiClient, GeminiError
from ..models import AuthUser
from ..permissions import Caller
from ..settings import Settings, get_settings
from .auth import get_current_user

router = APIRouter(prefix="/ai", tags=["ai"])

logger = logging.getLogger(__name__)


class GenerateRequest(BaseModel):
	topic: Optional[str] = None
	text: Optional[str] = None


def _source_block(req: GenerateRequest) -> str:
	return (
		f"Topic: {req.topic or 'No topic provided'}\n\n"
		f"Source content (if provided):\n{req.text or 'None'}"
	)


def build_notes_prompt(req: GenerateRequest) -> str:
	return (
		"Create clear, structured study notes for the material below.\n"
		f"{_source_block(req)}\n\n"
		"Notes must be well structured bullet points that are easy to revise, "
		"covering key concepts, explanations, steps and examples."
	)


def build_flashcards_prompt(req: GenerateRequest) -> str:
	return (
		"Create 10 study flashcards for the material below.\n"
		f"{_source_block(req)}\n\n"
		"Return ONLY a JSON array of objects with keys: front (string), back (string)."
	)


def build_quiz_prompt(req: GenerateRequest) -> str:
	return (
		"Write 5 multiple choice questions for the material below.\n"
		f"{_source_block(req)}\n\n"
		"Each question has exactly 4 options and exactly one correct option.\n"
		"Return ONLY a JSON array of objects with keys: prompt (string), choices (array of 4 strings), "
		"correct_answer (string, must equal one of the choices)."
	)


def _consume_quota(db: Session, username: str) -> None:
	row = db.get(AuthUser, username)
	if row is None:
		return
	if row.requests_used >= row.requests_limit:
		raise RateLimited("request limit reached")
	row.requests_used += 1
	db.commit()


def _refund_quota(db: Session, username: str) -> None:
	row = db.get(AuthUser, username)
	if row is not None and row.requests_used > 0:
		row.requests_used -= 1
		db.commit()


async def _run(prompt: str, max_tokens: int, user: Caller, db: Session, config: Settings) -> dict:
	# Only a call that actually reaches Gemini and succeeds counts against the quota
	try:
		client = GeminiClient(config=config)
	except ValueError as e:
		raise NotConfigured(str(e))
	try:
		_consume_quota(db, user.user_id)
		try:
			text = await client.generate(prompt, max_output_tokens=max_tokens)
		except GeminiError as e:
			logger.warning("AI generation failed for %s: %s", user.user_id, e)
			_refund_quota(db, user.user_id)
			raise UpstreamError("AI generation failed")
	finally:
		await client.aclose()
	return {"data": text}


def _require_source(req: GenerateRequest) -> None:
	if not (req.topic or "").strip() and not (req.text or "").strip():
		raise ValidationError("Provide either topic or text content")


@router.post("/notes")
async def generate_notes(
	req: GenerateRequest,
	user: Caller = Depends(get_current_user),
	db: Session = Depends(get_db),
	config: Settings = Depends(get_settings),
):
	_require_source(req)
	return await _run(build_notes_prompt(req), 800, user, db, config)


@router.post("/flashcards")
async def generate_flashcards(
	req: GenerateRequest,
	user: Caller = Depends(get_current_user),
	db: Session = Depends(get_db),
	config: Settings = Depends(get_settings),
):
	_require_source(req)
	return await _run(build_flashcards_prompt(req), 800, user, db, config)


@router.post("/quiz")
async def generate_quiz(
	req: GenerateRequest,
	user: Caller = Depends(get_current_user),
	db: Session = Depends(get_db),
	config: Settings = Depends(get_settings),
):
	_require_source(req)
	return await _run(build_quiz_prompt(req), 1200, user, db, config)
