"""
Request guards.

A guard is an ordered list of checks evaluated left to right. Each check gets
the request, the identity established so far (``None`` before
authentication) and the token service, and returns either ``Pass`` carrying
the identity forward or ``Reject`` naming why the request is refused. The
first ``Reject`` short-circuits the chain.

    require_admin = Guard(authenticated, has_role("admin"))

Routes declare a guard as a FastAPI dependency and receive the verified
``Identity``.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Sequence, Union

from fastapi import Depends, Request

from errors import ApiError, ForbiddenError, UnauthorizedError
from security import Identity, TokenError, TokenService

logger = logging.getLogger(__name__)

TOKEN_COOKIE = "token"


class RejectKind(str, Enum):
    UNAUTHORIZED = "unauthorized"
    INVALID_TOKEN = "invalid_token"
    FORBIDDEN = "forbidden"


@dataclass(frozen=True)
class Pass:
    identity: Optional[Identity]


@dataclass(frozen=True)
class Reject:
    kind: RejectKind
    message: str


Outcome = Union[Pass, Reject]
Check = Callable[[Request, Optional[Identity], TokenService], Outcome]

_ERRORS = {
    RejectKind.UNAUTHORIZED: UnauthorizedError,
    RejectKind.INVALID_TOKEN: UnauthorizedError,
    RejectKind.FORBIDDEN: ForbiddenError,
}


def extract_token(request: Request) -> Optional[str]:
    """The ``token`` cookie wins over an ``Authorization: Bearer`` header."""
    token = request.cookies.get(TOKEN_COOKIE)
    if token:
        return token
    authorization = request.headers.get("authorization", "")
    if authorization.startswith("Bearer "):
        return authorization.split(" ", 1)[1].strip() or None
    return None


def authenticated(request: Request, identity: Optional[Identity], tokens: TokenService) -> Outcome:
    token = extract_token(request)
    if not token:
        return Reject(RejectKind.UNAUTHORIZED, "Unauthorized")
    try:
        return Pass(tokens.verify(token))
    except TokenError as exc:
        logger.debug("Rejected token on %s: %s", request.url.path, exc)
        return Reject(RejectKind.INVALID_TOKEN, "Invalid token")


def has_role(*roles: str) -> Check:
    allowed = frozenset(roles)

    def check(request: Request, identity: Optional[Identity], tokens: TokenService) -> Outcome:
        if identity is None:
            return Reject(RejectKind.UNAUTHORIZED, "Unauthorized")
        if identity.role not in allowed:
            return Reject(RejectKind.FORBIDDEN, "Forbidden")
        return Pass(identity)

    check.__name__ = f"has_role({', '.join(roles)})"
    return check


def evaluate(checks: Sequence[Check], request: Request, tokens: TokenService) -> Outcome:
    identity: Optional[Identity] = None
    for check in checks:
        outcome = check(request, identity, tokens)
        if isinstance(outcome, Reject):
            return outcome
        identity = outcome.identity
    return Pass(identity)


def reject_to_error(reject: Reject) -> ApiError:
    return _ERRORS[reject.kind](reject.message)


def get_token_service(request: Request) -> TokenService:
    return request.app.state.tokens


class Guard:
    """FastAPI dependency running a chain of checks; returns the verified Identity."""

    def __init__(self, *checks: Check):
        if not checks:
            raise ValueError("a guard needs at least one check")
        self.checks = checks

    def __call__(self, request: Request, tokens: TokenService = Depends(get_token_service)) -> Identity:
        outcome = evaluate(self.checks, request, tokens)
        if isinstance(outcome, Reject):
            raise reject_to_error(outcome)
        if outcome.identity is None:
            raise UnauthorizedError("Unauthorized")
        request.state.user = outcome.identity
        return outcome.identity


require_auth = Guard(authenticated)
require_seller = Guard(authenticated, has_role("seller", "admin"))
require_admin = Guard(authenticated, has_role("admin"))


def optional_identity(request: Request, tokens: TokenService = Depends(get_token_service)) -> Optional[Identity]:
    """Identity for public routes that show more to owners and admins; never rejects."""
    outcome = authenticated(request, None, tokens)
    return outcome.identity if isinstance(outcome, Pass) else None
