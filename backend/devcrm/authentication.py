"""Login gate for the SQLAdmin panel at /admin.

The panel is an operator tool, separate from tenant users. Credentials come
from ADMIN_USERNAME / ADMIN_PASSWORD; with no password configured the panel
refuses every login.
"""

import hmac
import logging

from sqladmin.authentication import AuthenticationBackend
from starlette.requests import Request

from .deps import get_settings

logger = logging.getLogger(__name__)

SESSION_KEY = "admin_user"


class SimpleAuth(AuthenticationBackend):
    async def login(self, request: Request) -> bool:
        form = await request.form()
        username = str(form.get("username") or "")
        password = str(form.get("password") or "")

        settings = get_settings()
        if not settings.ADMIN_PASSWORD:
            logger.warning("[ADMIN] Login attempt rejected: ADMIN_PASSWORD is not set")
            return False

        user_ok = hmac.compare_digest(username, settings.ADMIN_USERNAME)
        password_ok = hmac.compare_digest(password, settings.ADMIN_PASSWORD)
        if not (user_ok and password_ok):
            logger.info("[ADMIN] Failed login for %s", username)
            return False

        request.session.update({SESSION_KEY: username})
        return True

    async def logout(self, request: Request) -> bool:
        request.session.clear()
        return True

    async def authenticate(self, request: Request) -> bool:
        return bool(request.session.get(SESSION_KEY))
