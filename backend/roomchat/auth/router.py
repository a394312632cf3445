"""Auth router for registration and login.

Endpoints:
    POST /api/register  - Create a user, returns a token
    POST /api/login     - Check a password, returns a token
    GET  /api/users     - List users with derived online status (bearer token)
"""
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request

from roomchat.chat.errors import AuthError, ValidationError

from .schemas import AuthResponse, LoginRequest, RegisterRequest, UserPublic, UserStatus
from .service import Identity, IdentityVerifier, UserDirectory, UserRecord

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["auth"])


def require_identity(
    request: Request, authorization: Optional[str] = Header(None)
) -> Identity:
    """FastAPI dependency: resolve ``Authorization: Bearer <token>``."""
    token = None
    if authorization and authorization.lower().startswith("bearer "):
        token = authorization.split(" ", 1)[1].strip()
    if not token:
        raise HTTPException(status_code=401, detail="Missing bearer token")

    verifier: IdentityVerifier = request.app.state.verifier
    try:
        return verifier.verify(token)
    except AuthError as e:
        raise HTTPException(status_code=401, detail=e.message)


def _auth_response(verifier: IdentityVerifier, record: UserRecord) -> AuthResponse:
    return AuthResponse(
        token=verifier.issue(record.user_id, record.username),
        user=UserPublic(id=record.user_id, username=record.username, email=record.email),
    )


@router.post("/register", response_model=AuthResponse)
async def register(body: RegisterRequest, request: Request) -> AuthResponse:
    directory: UserDirectory = request.app.state.users
    try:
        record = directory.register(body.username, body.password, body.email)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=e.message)
    return _auth_response(request.app.state.verifier, record)


@router.post("/login", response_model=AuthResponse)
async def login(body: LoginRequest, request: Request) -> AuthResponse:
    directory: UserDirectory = request.app.state.users
    try:
        record = directory.authenticate(body.username, body.password)
    except AuthError as e:
        logger.info(f"[Auth] Login failed for {body.username}: {e.message}")
        raise HTTPException(status_code=400, detail=e.message)
    return _auth_response(request.app.state.verifier, record)


@router.get("/users", response_model=List[UserStatus])
async def list_users(
    request: Request, identity: Identity = Depends(require_identity)
) -> List[UserStatus]:
    directory: UserDirectory = request.app.state.users
    engine = request.app.state.engine
    return [
        UserStatus(id=u.user_id, username=u.username, isOnline=engine.is_online(u.user_id))
        for u in directory.list_users()
    ]
