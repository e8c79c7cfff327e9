# Overview: Users, password hashing and bearer sessions.

"""
Authentication

- Passwords hashed with bcrypt (cost factor from BCRYPT_ROUNDS, default 12)
- Minimum 8 characters with upper, lower, digit and special character
- Bearer tokens are 32 random bytes; only their SHA-256 hash is stored
- Sessions have an absolute lifetime of SESSION_TTL_HOURS and can be revoked

The inventory and lifecycle services never see a User: routes pass the
user id through as the opaque performed_by string.
"""

from __future__ import annotations

import hashlib
import re
import secrets
from datetime import timedelta

import bcrypt
from flask import current_app

from ..errors import ConflictError, NotFoundError, UnauthorizedError, ValidationError
from ..extensions import db
from ..models import Company, SessionToken, Store, User
from ..models.auth import ALL_ROLES, ROLE_STAFF
from ..time_utils import utcnow
from .concurrency import run_in_transaction


def validate_password_strength(password: str) -> None:
    if not isinstance(password, str) or len(password) < 8:
        raise ValidationError("Password must be at least 8 characters long")
    if not re.search(r"[A-Z]", password):
        raise ValidationError("Password must contain at least one uppercase letter")
    if not re.search(r"[a-z]", password):
        raise ValidationError("Password must contain at least one lowercase letter")
    if not re.search(r"\d", password):
        raise ValidationError("Password must contain at least one digit")
    if not re.search(r"[!@#$%^&*(),.'\":{}|<>_\-]", password):
        raise ValidationError("Password must contain at least one special character")


def hash_password(password: str) -> str:
    validate_password_strength(password)
    rounds = current_app.config.get("BCRYPT_ROUNDS", 12)
    hashed = bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=rounds))
    return hashed.decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # Malformed stored hash
        return False


def _normalize_roles(roles) -> str:
    if not roles:
        return ROLE_STAFF
    if isinstance(roles, str):
        roles = [r for r in roles.split(",")]
    cleaned = sorted({r.strip() for r in roles if r and r.strip()})
    unknown = [r for r in cleaned if r not in ALL_ROLES]
    if unknown:
        raise ValidationError("Unknown role(s)", details={"roles": unknown, "allowed": list(ALL_ROLES)})
    if not cleaned:
        raise ValidationError("At least one role is required")
    return ",".join(cleaned)


def create_user(
    *,
    company_id: str,
    username: str,
    password: str,
    roles=None,
    email: str | None = None,
    full_name: str | None = None,
    store_id: str | None = None,
) -> User:
    """
    Username uniqueness is scoped to the company. A home store, when given,
    must belong to the same company.
    """
    username = (username or "").strip()
    if not username:
        raise ValidationError("username is required")
    role_str = _normalize_roles(roles)
    password_hash = hash_password(password)

    def _op():
        company = db.session.query(Company).filter_by(id=company_id).first()
        if company is None or not company.is_active:
            raise NotFoundError("Company not found", details={"company_id": company_id})

        if store_id is not None:
            store = db.session.query(Store).filter_by(id=store_id).first()
            if store is None or store.company_id != company_id:
                raise NotFoundError("Store not found", details={"store_id": store_id})

        existing = db.session.query(User).filter_by(company_id=company_id, username=username).first()
        if existing:
            raise ConflictError("Username already exists in this company", details={"username": username})

        user = User(
            company_id=company_id,
            store_id=store_id,
            username=username,
            email=email,
            full_name=full_name,
            password_hash=password_hash,
            roles=role_str,
        )
        db.session.add(user)
        db.session.flush()
        return user

    return run_in_transaction(_op)


def generate_token() -> str:
    return secrets.token_hex(32)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def login(*, username: str, password: str, company_id: str | None = None) -> tuple[User, str]:
    """
    Returns (user, plaintext_token). The plaintext token is only ever
    returned here; the database keeps the hash.
    """
    q = db.session.query(User).filter(User.username == username, User.is_active.is_(True))
    if company_id:
        q = q.filter(User.company_id == company_id)
    candidates = q.all()

    user = next((u for u in candidates if verify_password(password, u.password_hash)), None)
    if user is None:
        current_app.logger.info("Failed login for username %r", username)
        raise UnauthorizedError("Invalid username or password")

    token = generate_token()
    ttl = timedelta(hours=current_app.config.get("SESSION_TTL_HOURS", 12))

    def _op():
        now = utcnow()
        db.session.add(SessionToken(user_id=user.id, token_hash=hash_token(token), expires_at=now + ttl))
        user.last_login_at = now
        return user

    return run_in_transaction(_op), token


def validate_session(token: str) -> User | None:
    """Active user for a live token, or None if unknown, expired or revoked."""
    if not token:
        return None
    session = db.session.query(SessionToken).filter_by(token_hash=hash_token(token)).first()
    if session is None or session.revoked_at is not None:
        return None
    if session.expires_at <= utcnow():
        return None
    user = session.user
    if user is None or not user.is_active:
        return None
    return user


def logout(token: str) -> bool:
    def _op():
        session = db.session.query(SessionToken).filter_by(token_hash=hash_token(token)).first()
        if session is None or session.revoked_at is not None:
            return False
        session.revoked_at = utcnow()
        return True

    return run_in_transaction(_op)
