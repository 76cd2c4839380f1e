from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional
import logging
import uuid

from fastapi import APIRouter, Depends
from fastapi.security import OAuth2PasswordRequestForm, OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from pydantic import BaseModel, Field

from ..settings import Settings, get_settings
from sqlalchemy.orm import Session
from ..db import get_db
from ..errors import ConflictError, Forbidden, Unauthorized, ValidationError
from ..models import AuthUser, AuthSession, Role, utcnow
from ..permissions import Caller, expand_roles, has_any_role

router = APIRouter(prefix="/auth", tags=["auth"])

logger = logging.getLogger(__name__)
logging.getLogger('passlib').setLevel(logging.ERROR)
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/token")

SELF_SERVICE_ROLES = {Role.STUDENT.value, Role.LECTURER.value}


class Token(BaseModel):
	access_token: str
	token_type: str = "bearer"


class Me(BaseModel):
	user_id: str
	roles: List[str]


def _truncate_for_bcrypt(password: str) -> str:
	# bcrypt only looks at the first 72 bytes
	password_bytes = password.encode('utf-8')
	if len(password_bytes) > 72:
		password_bytes = password_bytes[:72]
	return password_bytes.decode('utf-8', errors='ignore')


def hash_password(password: str) -> str:
	return pwd_context.hash(_truncate_for_bcrypt(password))


def verify_password(plain_password: str, hashed_password: str) -> bool:
	return pwd_context.verify(_truncate_for_bcrypt(plain_password), hashed_password)


def ensure_seed_admin(db: Session, config: Settings) -> None:
	username = config.seed_username
	password = config.seed_password_plain
	if not username or not password:
		return
	if db.get(AuthUser, username) is not None:
		return
	db.add(AuthUser(username=username, password_hash=hash_password(password), roles=Role.ADMIN.value, requests_limit=config.default_requests_limit))
	db.commit()
	logger.info("seed admin %s created", username)


def authenticate_user(db: Session, username: str, password: str) -> Optional[AuthUser]:
	user_row = db.get(AuthUser, username)
	if user_row and verify_password(password, user_row.password_hash):
		return user_row
	return None


def _resolve_expiry(config: Settings, expires_delta: Optional[timedelta]) -> datetime:
	delta = expires_delta
	if delta is None:
		minutes = config.access_token_expire_minutes
		delta = timedelta(minutes=minutes) if minutes > 0 else timedelta(days=30)
	return datetime.now(timezone.utc) + delta


def create_access_token(data: dict, config: Settings, expires_delta: Optional[timedelta] = None) -> str:
	to_encode = data.copy()
	to_encode.update({"exp": _resolve_expiry(config, expires_delta)})
	return jwt.encode(to_encode, config.jwt_secret_key, algorithm=config.jwt_algorithm)


@router.post("/token", response_model=Token)
async def login(
	form_data: OAuth2PasswordRequestForm = Depends(),
	db: Session = Depends(get_db),
	config: Settings = Depends(get_settings),
):
	user = authenticate_user(db, form_data.username, form_data.password)
	if not user:
		raise Unauthorized("Incorrect username or password")
	# Persist the session id (jti) so it can be revoked server-side
	session_id = uuid.uuid4().hex
	access_token = create_access_token({"sub": user.username, "jti": session_id}, config)
	db.add(AuthSession(session_id=session_id, username=user.username))
	db.commit()
	return Token(access_token=access_token)


def get_current_user(
	token: str = Depends(oauth2_scheme),
	db: Session = Depends(get_db),
	config: Settings = Depends(get_settings),
) -> Caller:
	credentials_exception = Unauthorized("Could not validate credentials", headers={"WWW-Authenticate": "Bearer"})
	try:
		payload = jwt.decode(token, config.jwt_secret_key, algorithms=[config.jwt_algorithm])
		username: str | None = payload.get("sub")
		jti: str | None = payload.get("jti")
		if username is None or jti is None:
			raise credentials_exception
	except JWTError:
		raise credentials_exception
	row = db.get(AuthSession, jti)
	if not row or row.username != username:
		raise credentials_exception
	user_row = db.get(AuthUser, username)
	if user_row is None:
		raise credentials_exception
	row.last_activity_at = utcnow()
	db.commit()
	return Caller(user_id=username, roles=user_row.role_set)


def require_roles(*allowed: Role) -> Callable[..., Caller]:
	def dependency(user: Caller = Depends(get_current_user)) -> Caller:
		if not has_any_role(user, *allowed):
			raise Forbidden("Forbidden: insufficient permissions")
		return user
	return dependency


@router.get("/me", response_model=Me)
async def me(user: Caller = Depends(get_current_user)):
	return Me(user_id=user.user_id, roles=sorted(expand_roles(user.roles)))


class RegisterRequest(BaseModel):
	username: str
	password: str
	email: Optional[str] = None
	roles: List[str] = Field(default_factory=lambda: [Role.STUDENT.value])


@router.post("/register", status_code=201)
async def register(req: RegisterRequest, db: Session = Depends(get_db), config: Settings = Depends(get_settings)):
	username = (req.username or "").strip()
	password = req.password or ""
	if not username or not password:
		raise ValidationError("username and password are required")
	if len(username) < 3 or len(username) > 128:
		raise ValidationError("username must be 3-128 characters")
	roles = {r.strip().upper() for r in req.roles if r and r.strip()} or {Role.STUDENT.value}
	if not roles <= SELF_SERVICE_ROLES:
		raise ValidationError("roles must be STUDENT and/or LECTURER")
	if db.get(AuthUser, username) is not None:
		raise ConflictError("username already exists")
	row = AuthUser(
		username=username,
		password_hash=hash_password(password),
		email=(req.email or "").strip() or None,
		roles=",".join(sorted(roles)),
		requests_limit=config.default_requests_limit,
	)
	db.add(row)
	db.commit()
	return {"ok": True, "user_id": username, "roles": sorted(roles)}
