"""
Login, session and password flows on top of the identity provider.

After sign-in the user's profile decides which outlets they see: admins and
accountants get every active outlet, managers only their assigned active
outlets (pre-selected when there is exactly one).
"""

from __future__ import annotations

import logging
from typing import Optional

from rental_backend.auth import AuthClient, Session
from rental_backend.db import DbClient, Outlet, UserProfile, UserRole
from rental_backend.results import AuthApiError, BackendError, ErrorKind, Result
from rental_backend.schemas import LoginResponse

logger = logging.getLogger(__name__)

GLOBAL_OUTLET_ROLES = (UserRole.ADMIN, UserRole.ACCOUNTANT)


class AuthService:
    def __init__(
        self,
        auth: AuthClient,
        db: DbClient,
        *,
        password_reset_redirect_url: Optional[str] = None,
    ):
        self.auth = auth
        self.db = db
        self.password_reset_redirect_url = password_reset_redirect_url

    def _resolve_outlets(self, profile: UserProfile) -> tuple[list[Outlet], Optional[str]]:
        outlets: list[Outlet] = []
        selected: Optional[str] = None
        try:
            if profile.role in GLOBAL_OUTLET_ROLES:
                outlets = self.db.list_active_outlets()
            elif profile.role == UserRole.MANAGER:
                outlets = [
                    outlet
                    for outlet in self.db.list_assigned_outlets(profile.id)
                    if outlet.is_active
                ]
                if len(outlets) == 1:
                    selected = outlets[0].id
        except BackendError as exc:
            # A signed-in user without outlets can still reach their profile.
            logger.error("Error fetching outlets for %s: %s", profile.id, exc.message)
            return [], None
        return outlets, selected

    def _build_response(self, profile: UserProfile) -> LoginResponse:
        outlets, selected = self._resolve_outlets(profile)
        return LoginResponse(profile=profile, outlets=outlets, selected_outlet=selected)

    def login(self, email: str, password: str) -> Result[LoginResponse]:
        try:
            session = self.auth.sign_in_with_password(email, password)
        except AuthApiError as exc:
            logger.warning("Login failed for %s: %s", email, exc.message)
            return Result.failure(ErrorKind.AUTH_FAILED, exc.message)
        except BackendError as exc:
            logger.error("Error signing in: %s", exc.message)
            return Result.failure(ErrorKind.BACKEND_ERROR, exc.message)

        if session is None or session.user is None:
            return Result.failure(
                ErrorKind.AUTH_FAILED, "Login failed. No user data returned."
            )

        try:
            profile = self.db.get_user_profile(session.user.id)
        except BackendError as exc:
            logger.error("Error loading user profile: %s", exc.message)
            return Result.failure(ErrorKind.BACKEND_ERROR, exc.message)
        if profile is None:
            return Result.failure(
                ErrorKind.PROFILE_NOT_FOUND,
                "User profile not found. Please contact support.",
            )

        if not profile.is_active:
            try:
                self.auth.sign_out()
            except BackendError as exc:
                logger.error(
                    "Error signing out deactivated user %s: %s", profile.id, exc.message
                )
            return Result.failure(
                ErrorKind.ACCOUNT_DEACTIVATED,
                "Your account has been deactivated. Please contact admin.",
            )

        return Result.success(self._build_response(profile))

    def logout(self) -> Result[None]:
        try:
            self.auth.sign_out()
        except BackendError as exc:
            logger.error("Error signing out: %s", exc.message)
            return Result.failure(ErrorKind.SESSION_ERROR, exc.message)
        return Result.success()

    def get_current_session(self) -> Result[Optional[Session]]:
        try:
            return Result.success(self.auth.get_session())
        except BackendError as exc:
            logger.error("Error getting session: %s", exc.message)
            return Result.failure(ErrorKind.BACKEND_ERROR, exc.message)

    def get_current_user_profile(self) -> Result[Optional[LoginResponse]]:
        """
        Passive "am I logged in" check. A missing session or profile is a
        successful ``None``, not an error.
        """
        session_result = self.get_current_session()
        if not session_result.ok:
            return Result(error=session_result.error)
        session = session_result.value
        if session is None or session.user is None:
            return Result.success(None)

        try:
            profile = self.db.get_user_profile(session.user.id)
        except BackendError as exc:
            logger.error("Error loading user profile: %s", exc.message)
            return Result.failure(ErrorKind.BACKEND_ERROR, exc.message)
        if profile is None:
            return Result.success(None)

        return Result.success(self._build_response(profile))

    def reset_password(self, email: str) -> Result[None]:
        if not (email or "").strip():
            return Result.failure(ErrorKind.INVALID_INPUT, "Email is required")
        try:
            self.auth.reset_password_for_email(
                email, redirect_to=self.password_reset_redirect_url
            )
        except BackendError as exc:
            logger.error("Error requesting password reset: %s", exc.message)
            return Result.failure(ErrorKind.BACKEND_ERROR, exc.message)
        return Result.success()

    def update_password(self, new_password: str) -> Result[None]:
        try:
            self.auth.update_user_password(new_password)
        except AuthApiError as exc:
            logger.error("Error updating password: %s", exc.message)
            kind = ErrorKind.SESSION_ERROR if exc.status_code == 401 else ErrorKind.BACKEND_ERROR
            return Result.failure(kind, exc.message)
        except BackendError as exc:
            logger.error("Error updating password: %s", exc.message)
            return Result.failure(ErrorKind.BACKEND_ERROR, exc.message)
        return Result.success()
