# ---------------------------------------------------------------------------
# Author  : Kyle <kyle@hacking-linux.com>
# Version : 20261019v1
# ---------------------------------------------------------------------------
"""
User endpoints – directory listing and self-service profile management.

Every route is behind the full-session gate: a partial (2FA-pending) token
gets 403 STEP_UP_REQUIRED before any business logic runs.
"""

from fastapi import APIRouter, Depends, Query, Request, Response

from auth.schemas import MessageResponse
from core.exceptions import ConflictError, NotFoundError
from core.logger import logger
from core.security import clear_session_cookie, get_client_ip, get_current_user
from models.user import User
from store import CredentialStore, get_store
from users.schemas import UpdateMeRequest, UserListResponse, UserPublic

router = APIRouter(prefix="/users", tags=["users"])


# ---------------------------------------------------------------------------
# GET /users  – list users
# ---------------------------------------------------------------------------


@router.get("", response_model=UserListResponse)
def list_users(
    offset: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    current_user: User = Depends(get_current_user),
    store: CredentialStore = Depends(get_store),
):
    return UserListResponse(
        users=[UserPublic.model_validate(u) for u in store.list_users(offset, limit)],
        total=store.count_users(),
    )


# ---------------------------------------------------------------------------
# /users/me
# ---------------------------------------------------------------------------


@router.get("/me", response_model=UserPublic)
def me(current_user: User = Depends(get_current_user)):
    """Return the authenticated user's public profile (no secrets)."""
    return current_user


@router.put("/me", response_model=UserPublic)
def update_me(
    body: UpdateMeRequest,
    request: Request,
    current_user: User = Depends(get_current_user),
    store: CredentialStore = Depends(get_store),
):
    """Change the account email."""
    email = body.email.lower()
    if email != current_user.email:
        other = store.find_user_by_email(email)
        if other and other.id != current_user.id:
            raise ConflictError("Email already in use")
        old_email = current_user.email
        store.update_user(current_user, email=email)
        store.add_audit(
            "profile_updated",
            actor_id=current_user.id,
            target_user_id=current_user.id,
            detail=f"email {old_email} -> {email}",
            request_ip=get_client_ip(request),
        )
        store.commit()
        store.refresh(current_user)
    return current_user


@router.delete("/me", response_model=MessageResponse)
def delete_me(
    request: Request,
    response: Response,
    current_user: User = Depends(get_current_user),
    store: CredentialStore = Depends(get_store),
):
    """Delete the caller's account and end the session."""
    store.add_audit(
        "account_deleted",
        target_user_id=None,
        detail=f"username={current_user.username}",
        request_ip=get_client_ip(request),
    )
    user_id = current_user.id
    store.delete_user(current_user)
    store.commit()
    clear_session_cookie(response, request.app.state.settings)
    logger.info("Account deleted user_id=%s", user_id)
    return MessageResponse(message="Account deleted successfully")


# ---------------------------------------------------------------------------
# GET /users/{id}
# ---------------------------------------------------------------------------


@router.get("/{user_id}", response_model=UserPublic)
def get_user(
    user_id: int,
    current_user: User = Depends(get_current_user),
    store: CredentialStore = Depends(get_store),
):
    user = store.find_user_by_id(user_id)
    if not user:
        raise NotFoundError("User not found")
    return user
