# ---------------------------------------------------------------------------
# Author  : Kyle <kyle@hacking-linux.com>
# Version : 20261019v1
# ---------------------------------------------------------------------------
"""
Bootstrap script – creates the first admin user.

Run once after the initial migration:
    python bin/seed_admin.py

The script reads FIRST_ADMIN_USERNAME, FIRST_ADMIN_EMAIL and
FIRST_ADMIN_PASSWORD from etc/app.conf.  After the row is inserted those
values are no longer used by the application.
"""

import sys
import os

# ---------------------------------------------------------------------------
# Path setup so backend modules are importable
# ---------------------------------------------------------------------------
# bin/seed_admin.py  →  ../  →  project root
_PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
_BACKEND_DIR  = os.path.join(_PROJECT_ROOT, "backend")
if _BACKEND_DIR not in sys.path:
    sys.path.insert(0, _BACKEND_DIR)

from core.config import get_settings          # noqa: E402
from core.exceptions import ConflictError     # noqa: E402
from core.security import hash_password       # noqa: E402
from database import make_engine, make_session_factory  # noqa: E402
from store import CredentialStore             # noqa: E402


def seed():
    settings = get_settings()
    if not (settings.first_admin_username and settings.first_admin_email and settings.first_admin_password):
        print("[seed_admin] FIRST_ADMIN_USERNAME / FIRST_ADMIN_EMAIL / FIRST_ADMIN_PASSWORD not set in etc/app.conf – nothing to do.")
        return

    session_factory = make_session_factory(make_engine(settings.database_url))
    db = session_factory()
    try:
        store = CredentialStore(db)
        email = settings.first_admin_email.lower()
        if store.find_user_by_username_or_email(settings.first_admin_username, email):
            print(f"[seed_admin] Admin '{settings.first_admin_username}' already exists – skipping.")
            return

        try:
            admin = store.create_user(
                settings.first_admin_username,
                email,
                password_hash=hash_password(
                    settings.first_admin_password,
                    rounds=settings.password_hash_rounds,
                ),
                role="admin",
            )
        except ConflictError:
            print(f"[seed_admin] Admin '{settings.first_admin_username}' already exists – skipping.")
            return
        store.add_audit("user_register", target_user_id=admin.id, detail="seed_admin")
        store.commit()
        print(f"[seed_admin] Admin '{settings.first_admin_username}' created successfully.")
    finally:
        db.close()


if __name__ == "__main__":
    seed()
