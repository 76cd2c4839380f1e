from fastapi import APIRouter, Depends

from ..settings import Settings, get_settings

router = APIRouter(tags=["health"])


@router.get("/health")
def health():
	return {"status": "ok"}


@router.get("/info")
def info(config: Settings = Depends(get_settings)):
	return {"status": "ok", "gemini_configured": bool(config.gemini_api_key)}
