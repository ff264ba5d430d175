# File: tests/unit/test_auth_service.py
"""
Unit tests for the AuthService: session lifecycle, role checks and the
route guard
"""

import unittest
import sys
from pathlib import Path
from unittest.mock import Mock

sys.path.append(str(Path(__file__).parent.parent.parent))

from parkreserve.application.auth_service import AuthService
from parkreserve.application.dtos import LoginDataDTO, UsuarioReservaDTO
from parkreserve.domain.models import User, UserRole
from parkreserve.domain.exceptions import ApiError, AuthenticationError, AuthorizationError
from parkreserve.infrastructure.storage import InMemoryStorage, TOKEN_KEY, USER_KEY
from parkreserve.infrastructure.messaging import Notifier


def make_users():
    return [
        User(id="1", name="Admin", email="admin@example.com", role=UserRole.ADMIN),
        User(id="2", name="Rita", email="rita@example.com", role=UserRole.REGISTRADOR),
        User(id="3", name="Raul", email="raul@example.com", role=UserRole.RESERVADOR),
    ]


class TestOfflineSession(unittest.TestCase):

    def setUp(self):
        self.storage = InMemoryStorage()
        self.notifier = Notifier()
        self.auth = AuthService(storage=self.storage, notifier=self.notifier, users=make_users())

    def test_login_persists_session(self):
        self.assertTrue(self.auth.login("rita@example.com", "secret"))
        self.assertEqual(self.auth.current_user.role, UserRole.REGISTRADOR)
        self.assertEqual(self.storage.get_item(TOKEN_KEY), "offline-2")
        self.assertEqual(self.storage.get_json(USER_KEY)["email"], "rita@example.com")
        self.assertEqual(self.notifier.last.title, "Inicio de sesión exitoso")

    def test_login_unknown_user(self):
        self.assertFalse(self.auth.login("nobody@example.com", "secret"))
        self.assertIsNone(self.auth.current_user)
        self.assertTrue(self.notifier.last.is_error)

    def test_login_invalid_email(self):
        self.assertFalse(self.auth.login("not-an-email", "secret"))
        self.assertEqual(self.notifier.last.title, "Error de autenticación")

    def test_register_and_login(self):
        form = {
            "nombre": "Nuevo",
            "email": "nuevo@example.com",
            "documento": "123",
            "password": "secret1",
            "password_confirmation": "secret1",
            "role": "reservador",
        }
        self.assertTrue(self.auth.register(form))
        self.assertEqual(self.auth.current_user.role, UserRole.RESERVADOR)
        self.assertEqual(self.notifier.last.title, "Registro exitoso")

    def test_registered_user_needs_password(self):
        form = {
            "nombre": "Nuevo",
            "email": "nuevo@example.com",
            "documento": "123",
            "password": "secret1",
            "password_confirmation": "secret1",
        }
        self.auth.register(form)
        self.auth.logout()

        self.assertFalse(self.auth.login("nuevo@example.com", "wrong"))
        self.assertIsNone(self.auth.current_user)
        self.assertTrue(self.auth.login("nuevo@example.com", "secret1"))

    def test_seeded_directory_checks_passwords(self):
        auth = AuthService.offline(
            [
                {"name": "Rita", "email": "rita@example.com", "role": "registrador", "password": "secret1"},
                {"name": "Raul", "email": "raul@example.com"},
            ],
            storage=InMemoryStorage(),
            notifier=self.notifier
        )
        self.assertFalse(auth.login("rita@example.com", "wrong"))
        self.assertEqual(self.notifier.last.title, "Error de autenticación")
        self.assertTrue(auth.login("RITA@example.com", "secret1"))
        self.assertEqual(auth.current_user.role, UserRole.REGISTRADOR)
        self.assertEqual(auth.current_user.id, "u1")
        auth.logout()
        self.assertTrue(auth.login("raul@example.com", "anything"))
        self.assertEqual(auth.current_user.role, UserRole.RESERVADOR)

    def test_register_password_mismatch(self):
        form = {
            "nombre": "Nuevo",
            "email": "nuevo@example.com",
            "documento": "123",
            "password": "secret1",
            "password_confirmation": "secret2",
        }
        self.assertFalse(self.auth.register(form))
        self.assertEqual(self.notifier.last.title, "Error de registro")

    def test_register_cannot_request_admin(self):
        form = {
            "nombre": "Nuevo",
            "email": "nuevo@example.com",
            "documento": "123",
            "password": "secret1",
            "password_confirmation": "secret1",
            "role": "admin",
        }
        self.assertFalse(self.auth.register(form))
        self.assertIsNone(self.auth.current_user)

    def test_logout_clears_storage(self):
        self.auth.login("raul@example.com", "secret")
        self.auth.logout()
        self.assertIsNone(self.auth.current_user)
        self.assertIsNone(self.storage.get_item(TOKEN_KEY))
        self.assertIsNone(self.storage.get_item(USER_KEY))
        self.assertEqual(self.notifier.last.title, "Sesión cerrada")

    def test_restore_session(self):
        self.auth.login("raul@example.com", "secret")
        fresh = AuthService(storage=self.storage, users=make_users())
        self.assertEqual(fresh.restore_session().email, "raul@example.com")

    def test_restore_discards_user_without_token(self):
        self.storage.set_json(USER_KEY, make_users()[2].to_dict())
        self.assertIsNone(self.auth.restore_session())
        self.assertIsNone(self.storage.get_item(USER_KEY))

    def test_restore_discards_corrupt_user(self):
        self.storage.set_item(TOKEN_KEY, "t")
        self.storage.set_item(USER_KEY, "{not json")
        self.assertIsNone(self.auth.restore_session())

    def test_handle_auth_error(self):
        self.auth.login("raul@example.com", "secret")
        self.auth.handle_auth_error()
        self.assertIsNone(self.auth.current_user)
        self.assertEqual(self.notifier.last.title, "Sesión expirada")


class TestBackedSession(unittest.TestCase):

    def setUp(self):
        self.storage = InMemoryStorage()
        self.auth_api = Mock()
        self.usuario = UsuarioReservaDTO(id=5, nombre="Rita", email="rita@example.com", role="registrador")
        self.auth_api.login.return_value = LoginDataDTO(user=self.usuario, access_token="tok-5")
        self.auth_api.me.return_value = self.usuario
        self.auth = AuthService(auth_api=self.auth_api, storage=self.storage)

    def test_login_uses_backend_role(self):
        self.assertTrue(self.auth.login("rita@example.com", "secret"))
        self.assertEqual(self.auth.current_user.id, "5")
        self.assertEqual(self.auth.current_user.role, UserRole.REGISTRADOR)
        self.assertEqual(self.storage.get_item(TOKEN_KEY), "tok-5")

    def test_backend_rejects_login(self):
        self.auth_api.login.side_effect = ApiError("Credenciales inválidas", status=401)
        self.assertFalse(self.auth.login("rita@example.com", "bad"))
        self.assertEqual(self.auth.notifier.last.description, "Credenciales inválidas")

    def test_logout_survives_backend_failure(self):
        self.auth.login("rita@example.com", "secret")
        self.auth_api.logout.side_effect = ApiError("Error de conexión")
        self.auth.logout()
        self.assertIsNone(self.storage.get_item(TOKEN_KEY))

    def test_verify_token(self):
        self.auth.login("rita@example.com", "secret")
        self.assertTrue(self.auth.verify_token())

    def test_verify_token_rejected(self):
        self.auth.login("rita@example.com", "secret")
        self.auth_api.me.side_effect = AuthenticationError()
        self.assertFalse(self.auth.verify_token())
        self.assertIsNone(self.auth.current_user)

    def test_verify_without_token(self):
        self.assertFalse(self.auth.verify_token())
        self.auth_api.me.assert_not_called()


class TestRouteGuard(unittest.TestCase):

    def setUp(self):
        self.auth = AuthService(users=make_users())

    def test_public_routes(self):
        self.assertEqual(self.auth.resolve_route("/login"), "/login")
        self.assertEqual(self.auth.resolve_route("/"), "/")

    def test_unknown_route(self):
        self.assertEqual(self.auth.resolve_route("/nope"), "/404")

    def test_protected_without_session(self):
        self.assertEqual(self.auth.resolve_route("/dashboard"), "/login")
        self.assertFalse(self.auth.can_access("/registrador/spots"))

    def test_wrong_role_goes_to_dashboard(self):
        self.auth.login("raul@example.com", "secret")
        self.assertEqual(self.auth.resolve_route("/registrador/spots"), "/dashboard")
        self.assertEqual(self.auth.resolve_route("/admin/users"), "/dashboard")
        self.assertTrue(self.auth.can_access("/reservador/search"))

    def test_admin_reaches_everything(self):
        self.auth.login("admin@example.com", "secret")
        for path in ("/registrador/reports", "/reservador/reservations", "/admin/tickets"):
            self.assertTrue(self.auth.can_access(path), path)

    def test_root_with_session(self):
        self.auth.login("rita@example.com", "secret")
        self.assertEqual(self.auth.resolve_route("/"), "/dashboard")

    def test_trailing_slash_and_query(self):
        self.auth.login("rita@example.com", "secret")
        self.assertTrue(self.auth.can_access("/registrador/spots/?page=2"))

    def test_require_role(self):
        with self.assertRaises(AuthenticationError):
            self.auth.require_role(UserRole.ADMIN)
        self.auth.login("raul@example.com", "secret")
        with self.assertRaises(AuthorizationError):
            self.auth.require_role(UserRole.ADMIN)
        self.assertEqual(self.auth.require_role().email, "raul@example.com")


if __name__ == '__main__':
    unittest.main()
