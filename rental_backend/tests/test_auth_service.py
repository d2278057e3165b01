import unittest
from unittest.mock import patch

from rental_backend.auth import InMemoryAuthClient
from rental_backend.auth_service import AuthService
from rental_backend.db import InMemoryDbClient, Outlet, UserProfile, UserRole
from rental_backend.results import (
    AccountDeactivated,
    AuthFailed,
    BackendError,
    ErrorKind,
)

PASSWORD = "s3cret-pass"


class AuthServiceTests(unittest.TestCase):
    def setUp(self):
        self.auth = InMemoryAuthClient()
        self.db = InMemoryDbClient()
        self.service = AuthService(
            self.auth,
            self.db,
            password_reset_redirect_url="https://app.test/reset-password",
        )
        self.db.save_outlet(Outlet(id="o-zeta", name="Zeta Depot"))
        self.db.save_outlet(Outlet(id="o-alpha", name="Alpha Store"))
        self.db.save_outlet(Outlet(id="o-mid", name="Midtown"))
        self.db.save_outlet(Outlet(id="o-closed", name="Closed Branch", is_active=False))

    def _make_user(self, email, role, is_active=True):
        user = self.auth.create_user(email, PASSWORD)
        self.db.save_user_profile(
            UserProfile(
                id=user.id,
                email=email,
                full_name=email.split("@")[0],
                role=role,
                is_active=is_active,
            )
        )
        return user

    def test_admin_and_accountant_get_all_active_outlets_by_name(self):
        for role in (UserRole.ADMIN, UserRole.ACCOUNTANT):
            with self.subTest(role=role):
                self._make_user(f"{role.value}@rental.test", role)
                result = self.service.login(f"{role.value}@rental.test", PASSWORD)
                self.assertTrue(result.ok)
                names = [o.name for o in result.value.outlets]
                self.assertEqual(names, ["Alpha Store", "Midtown", "Zeta Depot"])
                self.assertIsNone(result.value.selected_outlet)

                current = self.service.get_current_user_profile()
                self.assertEqual(
                    [o.id for o in current.value.outlets],
                    ["o-alpha", "o-mid", "o-zeta"],
                )

    def test_manager_with_single_active_outlet_is_preselected(self):
        user = self._make_user("manager@rental.test", UserRole.MANAGER)
        self.db.assign_outlet(user.id, "o-mid")
        self.db.assign_outlet(user.id, "o-closed")

        result = self.service.login("manager@rental.test", PASSWORD)

        self.assertTrue(result.ok)
        self.assertEqual([o.id for o in result.value.outlets], ["o-mid"])
        self.assertEqual(result.value.selected_outlet, "o-mid")

    def test_manager_with_several_or_no_outlets_has_no_selection(self):
        user = self._make_user("multi@rental.test", UserRole.MANAGER)
        self.db.assign_outlet(user.id, "o-mid")
        self.db.assign_outlet(user.id, "o-zeta")
        result = self.service.login("multi@rental.test", PASSWORD)
        self.assertEqual(len(result.value.outlets), 2)
        self.assertIsNone(result.value.selected_outlet)

        self._make_user("lonely@rental.test", UserRole.MANAGER)
        result = self.service.login("lonely@rental.test", PASSWORD)
        self.assertEqual(result.value.outlets, [])
        self.assertIsNone(result.value.selected_outlet)

    def test_other_role_gets_no_outlets(self):
        self._make_user("staff@rental.test", UserRole.OTHER)
        result = self.service.login("staff@rental.test", PASSWORD)
        self.assertTrue(result.ok)
        self.assertEqual(result.value.outlets, [])

    def test_invalid_credentials(self):
        self._make_user("admin@rental.test", UserRole.ADMIN)
        result = self.service.login("admin@rental.test", "wrong-password")
        self.assertEqual(result.error.kind, ErrorKind.AUTH_FAILED)
        self.assertEqual(result.error.message, "Invalid login credentials")
        self.assertEqual(
            result.error.as_dict(),
            {"kind": "AUTH_FAILED", "message": "Invalid login credentials"},
        )
        with self.assertRaises(AuthFailed):
            result.unwrap()

    def test_missing_profile(self):
        self.auth.create_user("ghost@rental.test", PASSWORD)
        result = self.service.login("ghost@rental.test", PASSWORD)
        self.assertEqual(result.error.kind, ErrorKind.PROFILE_NOT_FOUND)

    def test_deactivated_account_is_signed_out(self):
        self._make_user("gone@rental.test", UserRole.ADMIN, is_active=False)

        result = self.service.login("gone@rental.test", PASSWORD)

        self.assertEqual(result.error.kind, ErrorKind.ACCOUNT_DEACTIVATED)
        with self.assertRaises(AccountDeactivated):
            result.unwrap()
        session = self.service.get_current_session()
        self.assertTrue(session.ok)
        self.assertIsNone(session.value)

    def test_outlet_lookup_failure_yields_empty_outlets(self):
        self._make_user("admin@rental.test", UserRole.ADMIN)
        with patch.object(
            self.db, "list_active_outlets", side_effect=BackendError("timeout")
        ):
            result = self.service.login("admin@rental.test", PASSWORD)
        self.assertTrue(result.ok)
        self.assertEqual(result.value.outlets, [])

    def test_logout(self):
        self._make_user("admin@rental.test", UserRole.ADMIN)
        self.service.login("admin@rental.test", PASSWORD)
        self.assertIsNotNone(self.service.get_current_session().value)

        self.assertTrue(self.service.logout().ok)
        self.assertIsNone(self.service.get_current_session().value)

    def test_logout_backend_failure_is_session_error(self):
        with patch.object(self.auth, "sign_out", side_effect=BackendError("network down")):
            result = self.service.logout()
        self.assertEqual(result.error.kind, ErrorKind.SESSION_ERROR)
        self.assertEqual(result.error.message, "network down")

    def test_get_current_session_backend_failure(self):
        with patch.object(self.auth, "get_session", side_effect=BackendError("boom")):
            result = self.service.get_current_session()
        self.assertEqual(result.error.kind, ErrorKind.BACKEND_ERROR)

    def test_current_user_profile_is_none_without_session_or_profile(self):
        result = self.service.get_current_user_profile()
        self.assertTrue(result.ok)
        self.assertIsNone(result.value)

        user = self._make_user("admin@rental.test", UserRole.ADMIN)
        self.service.login("admin@rental.test", PASSWORD)
        del self.db.profiles[user.id]
        result = self.service.get_current_user_profile()
        self.assertTrue(result.ok)
        self.assertIsNone(result.value)

    def test_current_user_profile_for_logged_in_manager(self):
        user = self._make_user("manager@rental.test", UserRole.MANAGER)
        self.db.assign_outlet(user.id, "o-alpha")
        self.service.login("manager@rental.test", PASSWORD)

        result = self.service.get_current_user_profile()

        self.assertEqual(result.value.profile.id, user.id)
        self.assertEqual(result.value.selected_outlet, "o-alpha")

    def test_reset_password_passes_redirect(self):
        result = self.service.reset_password("Admin@Rental.test")
        self.assertTrue(result.ok)
        self.assertEqual(
            self.auth.reset_requests,
            [("admin@rental.test", "https://app.test/reset-password")],
        )
        self.assertEqual(
            self.service.reset_password("  ").error.kind, ErrorKind.INVALID_INPUT
        )

    def test_update_password(self):
        result = self.service.update_password("another-pass")
        self.assertEqual(result.error.kind, ErrorKind.SESSION_ERROR)

        self._make_user("admin@rental.test", UserRole.ADMIN)
        self.service.login("admin@rental.test", PASSWORD)

        short = self.service.update_password("abc")
        self.assertEqual(short.error.kind, ErrorKind.BACKEND_ERROR)
        self.assertIn("at least 6 characters", short.error.message)

        too_long = self.service.update_password("x" * 80)
        self.assertEqual(too_long.error.kind, ErrorKind.BACKEND_ERROR)
        self.assertIn("72 bytes", too_long.error.message)

        self.assertTrue(self.service.update_password("another-pass").ok)
        self.service.logout()
        self.assertTrue(self.service.login("admin@rental.test", "another-pass").ok)


if __name__ == "__main__":
    unittest.main()
