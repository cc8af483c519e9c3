"""
auth.py – examiner sign-in: bcrypt password hashes and role-scoped JWTs

Only examiners hold tokens.  Students identify with name and student ID per
device (see ``storage.SessionStore``) and never reach these helpers.
"""

import logging
import os
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
import bcrypt as _bcrypt
from jose import ExpiredSignatureError, JWTError, jwt
from pydantic import BaseModel

from config import JWT_SECRET_FILE, TOKEN_EXPIRE_DAYS

logger = logging.getLogger(__name__)

ALGORITHM          = "HS256"
ROLE_EXAMINER      = "examiner"
MIN_PASSWORD_CHARS = 6
# bcrypt only looks at the first 72 bytes of a password.
MAX_PASSWORD_BYTES = 72


class ExaminerIdentity(BaseModel):
    examiner_id: int
    email: str


# ── Signing key ───────────────────────────────────────────────────────────────

def _signing_key() -> str:
    if os.environ.get("SECRET_KEY"):
        return os.environ["SECRET_KEY"]
    try:
        with open(JWT_SECRET_FILE, encoding="utf-8") as fh:
            stored = fh.read().strip()
        if stored:
            return stored
    except FileNotFoundError:
        pass

    key = "ep-" + secrets.token_hex(32)
    fd = os.open(JWT_SECRET_FILE, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w", encoding="utf-8") as fh:
        fh.write(key)
    logger.info("Generated examiner token key at %s", JWT_SECRET_FILE)
    return key


SECRET_KEY = _signing_key()

# ── Passwords ─────────────────────────────────────────────────────────────────


def password_problem(password: str) -> Optional[str]:
    """Why ``password`` cannot be used, or None when it is acceptable."""
    if len(password) < MIN_PASSWORD_CHARS:
        return f"Password must be at least {MIN_PASSWORD_CHARS} characters."
    if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
        return f"Password must be at most {MAX_PASSWORD_BYTES} bytes."
    return None


def hash_password(password: str) -> str:
    return _bcrypt.hashpw(password.encode("utf-8"), _bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    try:
        return _bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # Over-long password or a hash bcrypt cannot parse.
        return False


# ── Tokens ────────────────────────────────────────────────────────────────────

def create_access_token(examiner_id: int, email: str) -> str:
    issued = datetime.now(timezone.utc)
    claims = {
        "sub":   str(examiner_id),
        "email": email,
        "role":  ROLE_EXAMINER,
        "iat":   issued,
        "exp":   issued + timedelta(days=TOKEN_EXPIRE_DAYS),
    }
    return jwt.encode(claims, SECRET_KEY, algorithm=ALGORITHM)


def decode_token(token: str) -> ExaminerIdentity:
    """Verify an examiner token.

    Raises ExpiredSignatureError for a stale token and JWTError for anything
    else that is not a well-formed examiner token.
    """
    claims = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    if claims.get("role") != ROLE_EXAMINER:
        raise JWTError("not an examiner token")
    try:
        return ExaminerIdentity(examiner_id=int(claims["sub"]), email=claims["email"])
    except (KeyError, ValueError) as exc:
        raise JWTError(f"malformed claims: {exc}") from exc


# ── FastAPI dependency ────────────────────────────────────────────────────────

_bearer = HTTPBearer(auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def get_current_examiner(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer),
) -> ExaminerIdentity:
    if credentials is None:
        raise _unauthorized("Not authenticated")
    try:
        return decode_token(credentials.credentials)
    except ExpiredSignatureError:
        raise _unauthorized("Session expired, please sign in again")
    except JWTError:
        raise _unauthorized("Invalid token")
