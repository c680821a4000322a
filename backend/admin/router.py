# ---------------------------------------------------------------------------
# Author  : Kyle <kyle@hacking-linux.com>
# Version : 20261019v1
# ---------------------------------------------------------------------------
"""
Admin endpoints – account edits, role management, removal and the audit trail.

Every endpoint in this router is guarded by ``require_admin``.  A request
that carries a full session but belongs to a ``user`` role will receive 403
before any business logic runs.
"""

from datetime import datetime

from fastapi import APIRouter, Depends, Query, Request

from admin.schemas import (
    AuditLogListResponse,
    AuditLogRow,
    ChangeRoleRequest,
    UpdateUserRequest,
)
from auth.schemas import MessageResponse
from auth.service import validate_new_password
from core.exceptions import ConflictError, InvalidInputError, NotFoundError
from core.logger import logger
from core.security import get_client_ip, hash_password, require_admin
from models.user import User
from store import CredentialStore, get_store
from users.schemas import UserPublic

router = APIRouter(prefix="/admin", tags=["admin"])


# ---------------------------------------------------------------------------
# PUT /admin/users/{id}/role  – promote or demote a user
# ---------------------------------------------------------------------------


@router.put("/users/{user_id}/role", response_model=UserPublic)
def change_role(
    user_id: int,
    body: ChangeRoleRequest,
    request: Request,
    admin: User = Depends(require_admin),
    store: CredentialStore = Depends(get_store),
):
    """
    Change the role of an existing user.  An admin cannot change their own
    role (prevents accidental self-lockout).

    Tokens already issued keep their old role claim until they expire;
    ``require_admin`` re-reads the role, so a demotion is effective at once.
    """
    if user_id == admin.id:
        raise InvalidInputError("Cannot change your own role")

    target = store.find_user_by_id(user_id)
    if not target:
        raise NotFoundError("User not found")

    store.update_user(target, role=body.role)
    store.add_audit(
        "change_role",
        actor_id=admin.id,
        target_user_id=user_id,
        detail=f"new_role={body.role}",
        request_ip=get_client_ip(request),
    )
    store.commit()
    store.refresh(target)
    logger.info("Role changed user_id=%s role=%s by admin_id=%s", user_id, body.role, admin.id)
    return target


# ---------------------------------------------------------------------------
# PUT /admin/users/{id}  – edit another account's email, password or role
# ---------------------------------------------------------------------------


@router.put("/users/{user_id}", response_model=UserPublic)
def update_user(
    user_id: int,
    body: UpdateUserRequest,
    request: Request,
    admin: User = Depends(require_admin),
    store: CredentialStore = Depends(get_store),
):
    """
    Set any of email, password and role on another account.  Admins edit
    themselves through /users/me.  A new password invalidates outstanding
    reset links; the audit row names the changed fields, never their values.
    """
    if user_id == admin.id:
        raise InvalidInputError("Use /users/me to edit your own account")

    target = store.find_user_by_id(user_id)
    if not target:
        raise NotFoundError("User not found")

    settings = request.app.state.settings
    changes = {}
    if body.email is not None:
        email = body.email.lower()
        other = store.find_user_by_email(email)
        if other and other.id != target.id:
            raise ConflictError("Email already in use")
        changes["email"] = email
    if body.password is not None:
        validate_new_password(body.password, settings.password_min_length)
        changes["password_hash"] = hash_password(body.password, rounds=settings.password_hash_rounds)
    if body.role is not None:
        changes["role"] = body.role
    if not changes:
        raise InvalidInputError("Nothing to update")

    store.update_user(target, **changes)
    if "password_hash" in changes:
        store.delete_reset_tokens_for_user(target.id)

    fields = sorted("password" if name == "password_hash" else name for name in changes)
    store.add_audit(
        "admin_update_user",
        actor_id=admin.id,
        target_user_id=user_id,
        detail="fields=" + ",".join(fields),
        request_ip=get_client_ip(request),
    )
    store.commit()
    store.refresh(target)
    logger.info("User updated user_id=%s fields=%s by admin_id=%s", user_id, fields, admin.id)
    return target


# ---------------------------------------------------------------------------
# DELETE /admin/users/{id}  – remove an account
# ---------------------------------------------------------------------------


@router.delete("/users/{user_id}", response_model=MessageResponse)
def delete_user(
    user_id: int,
    request: Request,
    admin: User = Depends(require_admin),
    store: CredentialStore = Depends(get_store),
):
    """Guard: an admin cannot delete their own account here (use /users/me)."""
    if user_id == admin.id:
        raise InvalidInputError("Cannot delete yourself")

    target = store.find_user_by_id(user_id)
    if not target:
        raise NotFoundError("User not found")

    store.add_audit(
        "delete_user",
        actor_id=admin.id,
        detail=f"user_id={user_id} username={target.username}",
        request_ip=get_client_ip(request),
    )
    store.delete_user(target)
    store.commit()
    logger.info("User deleted user_id=%s by admin_id=%s", user_id, admin.id)
    return MessageResponse(message="User deleted")


# ---------------------------------------------------------------------------
# GET /admin/audit-logs  – audit trail with optional filters
# ---------------------------------------------------------------------------


@router.get("/audit-logs", response_model=AuditLogListResponse)
def list_audit_logs(
    user_ids: list[int] | None = Query(None, description="Actor or target user id(s) – repeated param"),
    actions: list[str] | None = Query(None, description="Exact action name(s) – repeated param"),
    since: datetime | None = Query(None, description="ISO-8601 start of time window"),
    until: datetime | None = Query(None, description="ISO-8601 end of time window"),
    limit: int = Query(200, ge=1, le=1000),
    admin: User = Depends(require_admin),
    store: CredentialStore = Depends(get_store),
):
    """
    Return audit log rows newest-first.  Supports optional filters:

    * ``user_ids`` – match rows where *either* actor or target is listed.
    * ``actions`` – e.g. ``login_failed``, ``2fa_disabled``.
    * ``since`` / ``until`` – ISO-8601 bounds on ``created_at``.
    * ``limit`` – max rows returned (default 200, cap 1000).
    """
    rows = store.list_audit_logs(
        user_ids=user_ids,
        actions=actions,
        since=since,
        until=until,
        limit=limit,
    )
    return AuditLogListResponse(logs=[
        AuditLogRow(
            id=row.id,
            actor_id=row.actor_id,
            actor_username=actor_username,
            target_user_id=row.target_user_id,
            target_username=target_username,
            action=row.action,
            detail=row.detail,
            request_ip=row.request_ip,
            created_at=row.created_at,
        )
        for row, actor_username, target_username in rows
    ])
