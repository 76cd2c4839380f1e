import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .db import Base, build_engine, build_session_factory
from .errors import AuroraError
from .settings import Settings, settings as default_settings
from .routers import health, ai
from .routers import auth
from .routers import quizzes
from .routers import rooms
from .routers import attempts

logger = logging.getLogger(__name__)

# Kinds for errors raised by the framework itself (unknown route, missing bearer token, ...)
HTTP_KINDS = {
	400: "validation_error",
	401: "unauthorized",
	403: "forbidden",
	404: "not_found",
	405: "method_not_allowed",
	409: "conflict",
	429: "rate_limited",
	502: "upstream_error",
	503: "unavailable",
}


def _describe_validation(exc: RequestValidationError) -> str:
	parts = []
	for err in exc.errors():
		loc = ".".join(str(p) for p in err.get("loc", ()) if p != "body")
		parts.append(f"{loc}: {err.get('msg')}" if loc else str(err.get("msg")))
	return "; ".join(parts) or "invalid request"


@asynccontextmanager
async def lifespan(app: FastAPI):
	# Initialize DB schema and the optional seed admin
	Base.metadata.create_all(bind=app.state.engine)
	db = app.state.session_factory()
	try:
		auth.ensure_seed_admin(db, app.state.settings)
	finally:
		db.close()
	yield
	app.state.engine.dispose()


def create_app(config: Optional[Settings] = None) -> FastAPI:
	config = config or default_settings
	logging.basicConfig(level=config.log_level.upper())

	app = FastAPI(title="Aurora Quiz Rooms API", lifespan=lifespan)
	# One engine per process; requests get sessions from it through get_db
	app.state.settings = config
	app.state.engine = build_engine(config.database_url)
	app.state.session_factory = build_session_factory(app.state.engine)

	app.include_router(health.router)
	app.include_router(auth.router)
	app.include_router(quizzes.router)
	app.include_router(rooms.router)
	app.include_router(attempts.router)
	app.include_router(ai.router)

	@app.exception_handler(AuroraError)
	async def aurora_error_handler(request: Request, exc: AuroraError):
		return JSONResponse(
			status_code=exc.status_code,
			content={"detail": exc.message, "kind": exc.kind},
			headers=exc.headers,
		)

	@app.exception_handler(RequestValidationError)
	async def request_validation_handler(request: Request, exc: RequestValidationError):
		return JSONResponse(status_code=400, content={"detail": _describe_validation(exc), "kind": "validation_error"})

	@app.exception_handler(StarletteHTTPException)
	async def http_error_handler(request: Request, exc: StarletteHTTPException):
		return JSONResponse(
			status_code=exc.status_code,
			content={"detail": exc.detail, "kind": HTTP_KINDS.get(exc.status_code, "error")},
			headers=getattr(exc, "headers", None),
		)

	@app.exception_handler(Exception)
	async def unexpected_error_handler(request: Request, exc: Exception):
		logger.exception("unhandled error on %s %s", request.method, request.url.path)
		return JSONResponse(status_code=500, content={"detail": "Internal server error", "kind": "internal_error"})

	return app


app = create_app()
