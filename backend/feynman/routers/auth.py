from datetime import datetime, timedelta, timezone
from typing import Optional
import logging
import uuid

from fastapi import APIRouter, Depends, HTTPException, Response
from fastapi.security import OAuth2PasswordBearer, OAuth2PasswordRequestForm
from jose import JWTError, jwt
from passlib.context import CryptContext
from pydantic import BaseModel, Field
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..db import get_db
from ..models import AuthSession, AuthUser
from ..settings import settings

router = APIRouter(prefix="/auth", tags=["auth"])

logger = logging.getLogger(__name__)
# passlib warns about the bcrypt version on first hash
logging.getLogger("passlib").setLevel(logging.ERROR)

hasher = CryptContext(schemes=["bcrypt"], deprecated="auto")
bearer = OAuth2PasswordBearer(tokenUrl="/auth/token")

BCRYPT_MAX_BYTES = 72
FALLBACK_TOKEN_LIFETIME = timedelta(days=30)


class Learner(BaseModel):
	username: str


class TokenResponse(BaseModel):
	access_token: str
	token_type: str = "bearer"
	expires_in: int


class Credentials(BaseModel):
	username: str = Field(min_length=3, max_length=128)
	password: str = Field(min_length=1)


def _truncate(password: str) -> str:
	# bcrypt ignores everything past 72 bytes; cut on a character boundary
	return password.encode("utf-8")[:BCRYPT_MAX_BYTES].decode("utf-8", errors="ignore")


def hash_password(password: str) -> str:
	return hasher.hash(_truncate(password))


def check_password(password: str, password_hash: str) -> bool:
	return hasher.verify(_truncate(password), password_hash)


def token_lifetime() -> timedelta:
	minutes = settings.access_token_expire_minutes
	if minutes and minutes > 0:
		return timedelta(minutes=minutes)
	return FALLBACK_TOKEN_LIFETIME


def open_session(db: Session, username: str) -> TokenResponse:
	"""Record a server-side session and return a bearer token pointing at it.

	The token's ``jti`` is the session row's key; deleting the row revokes the
	token before it expires.
	"""
	session_id = uuid.uuid4().hex
	lifetime = token_lifetime()
	issued = datetime.now(timezone.utc)
	claims = {"sub": username, "jti": session_id, "iat": issued, "exp": issued + lifetime}
	token = jwt.encode(claims, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)
	try:
		db.add(AuthSession(session_id=session_id, username=username))
		db.commit()
	except SQLAlchemyError:
		db.rollback()
		logger.exception("Could not record a session for %s", username)
		raise HTTPException(status_code=500, detail="Could not create session")
	return TokenResponse(access_token=token, expires_in=int(lifetime.total_seconds()))


def _session_claims(token: str) -> tuple:
	try:
		claims = jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
	except JWTError:
		return None, None
	return claims.get("sub"), claims.get("jti")


def get_current_user(token: str = Depends(bearer), db: Session = Depends(get_db)) -> Learner:
	"""Resolve the bearer token to a learner. Fails closed with 401."""
	unauthorized = HTTPException(
		status_code=401,
		detail="Could not validate credentials",
		headers={"WWW-Authenticate": "Bearer"},
	)
	username, session_id = _session_claims(token)
	if not username or not session_id:
		raise unauthorized
	try:
		row = db.get(AuthSession, session_id)
		if row is None or row.username != username:
			raise unauthorized
		row.last_activity_at = datetime.utcnow()
		db.commit()
	except SQLAlchemyError:
		db.rollback()
		logger.warning("Session lookup failed for %s", username)
		raise unauthorized
	return Learner(username=username)


@router.post("/register", status_code=201, response_model=TokenResponse)
async def register(req: Credentials, db: Session = Depends(get_db)):
	username = req.username.strip()
	if len(username) < 3:
		raise HTTPException(status_code=400, detail="username must be 3-128 characters")
	if db.get(AuthUser, username) is not None:
		raise HTTPException(status_code=409, detail="User already exists")
	try:
		db.add(AuthUser(username=username, password_hash=hash_password(req.password)))
		db.commit()
	except IntegrityError:
		db.rollback()
		raise HTTPException(status_code=409, detail="User already exists")
	logger.info("Registered %s", username)
	return open_session(db, username)


@router.post("/token", response_model=TokenResponse)
async def login(form: OAuth2PasswordRequestForm = Depends(), db: Session = Depends(get_db)):
	account: Optional[AuthUser] = db.get(AuthUser, form.username)
	if account is None or not check_password(form.password, account.password_hash):
		raise HTTPException(status_code=401, detail="Invalid credentials")
	return open_session(db, account.username)


@router.get("/me", response_model=Learner)
async def me(learner: Learner = Depends(get_current_user)):
	return learner


@router.post("/logout", status_code=204)
async def logout(token: str = Depends(bearer), db: Session = Depends(get_db)):
	username, session_id = _session_claims(token)
	if session_id:
		row = db.get(AuthSession, session_id)
		if row is not None and row.username == username:
			db.delete(row)
			db.commit()
	return Response(status_code=204)
