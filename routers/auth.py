"""
Account endpoints.

Register and login set the ``token`` cookie and also return the same JWT in
the body as ``{"user": ..., "token": ...}`` so non-browser clients can send it
as an ``Authorization: Bearer`` header.
"""

import logging

from fastapi import APIRouter, Depends, Request, Response, status
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from database import USERS, get_db, parse_object_id, user_out, utcnow
from errors import ConflictError, ForbiddenError, NotFoundError, UnauthorizedError
from guards import TOKEN_COOKIE, get_token_service, require_auth
from schemas import LoginInput, RegisterInput, User, normalize_email
from security import Identity, TokenService, hash_password, verify_password

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])

INVALID_CREDENTIALS = "Invalid credentials"


def _set_token_cookie(request: Request, response: Response, token: str, tokens: TokenService) -> None:
    response.set_cookie(
        TOKEN_COOKIE,
        token,
        max_age=tokens.lifetime_seconds,
        httponly=True,
        samesite="lax",
        secure=request.app.state.settings.COOKIE_SECURE,
    )


@router.post("/register", status_code=status.HTTP_201_CREATED)
def register(
    payload: RegisterInput,
    request: Request,
    response: Response,
    db: Database = Depends(get_db),
    tokens: TokenService = Depends(get_token_service),
):
    email = normalize_email(payload.email)
    if db[USERS].find_one({"email": email}, {"_id": 1}):
        raise ConflictError("Email already in use")

    now = utcnow()
    user = User(
        name=payload.name,
        email=email,
        password_hash=hash_password(payload.password),
        # RegisterInput only admits buyer/seller; admins come from the seed or an admin PATCH
        role=payload.role,
        phone=payload.phone,
        location=payload.location,
        created_at=now,
        updated_at=now,
    )
    try:
        result = db[USERS].insert_one(user.to_mongo())
    except DuplicateKeyError:
        raise ConflictError("Email already in use")

    created = db[USERS].find_one({"_id": result.inserted_id})
    token = tokens.issue(str(result.inserted_id), created["role"])
    _set_token_cookie(request, response, token, tokens)
    logger.info("Registered %s as %s", email, created["role"])
    return {"user": user_out(created), "token": token}


@router.post("/login")
def login(
    payload: LoginInput,
    request: Request,
    response: Response,
    db: Database = Depends(get_db),
    tokens: TokenService = Depends(get_token_service),
):
    user = db[USERS].find_one({"email": normalize_email(payload.email)})
    # same answer for unknown email and wrong password
    if not user or not verify_password(payload.password, user.get("password_hash")):
        raise UnauthorizedError(INVALID_CREDENTIALS)
    if not user.get("isActive", True):
        raise ForbiddenError("Account deactivated")

    token = tokens.issue(str(user["_id"]), user["role"])
    _set_token_cookie(request, response, token, tokens)
    return {"user": user_out(user), "token": token}


@router.post("/logout")
def logout(request: Request, response: Response):
    response.delete_cookie(
        TOKEN_COOKIE,
        httponly=True,
        samesite="lax",
        secure=request.app.state.settings.COOKIE_SECURE,
    )
    return {"message": "Logged out"}


@router.get("/me")
def me(identity: Identity = Depends(require_auth), db: Database = Depends(get_db)):
    user = db[USERS].find_one({"_id": parse_object_id(identity.id, "User")})
    if not user:
        raise NotFoundError("User not found")
    return {"user": user_out(user)}
