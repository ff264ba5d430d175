# File: parkreserve/application/auth_service.py
"""
Authentication and Route Guard Service

Responsibilities:
1. Session lifecycle: login, register, logout, restore on start
2. Token verification against the backend (/me)
3. Role checks for application operations (require_role)
4. Route guard over the page contract (can_access / resolve_route)

The token is opaque; no cryptographic validation happens client side.
The session (token + serialized user) lives in client storage under the
keys "token" and "user" and is cleared on logout or on any 401.

Without an AuthApi the service works offline against an in-memory user
directory (demo and tests). Passwords are checked for every user that has
one on record: seeded with a password or registered offline.
"""

from typing import Any, Dict, List, Optional, Tuple, Union
import logging

from ..domain.models import User, UserRole
from ..domain.exceptions import (
    ApiError, AuthenticationError, AuthorizationError, ValidationError
)
from ..infrastructure.storage import ClientStorage, InMemoryStorage, TOKEN_KEY, USER_KEY
from ..infrastructure.messaging import Notifier
from .dtos import LoginRequestDTO, RegisterRequestDTO, validate_dto
from .mappers import DataMapper

LOGIN_ROUTE = "/login"
DASHBOARD_ROUTE = "/dashboard"
NOT_FOUND_ROUTE = "/404"

ANY_ROLE = tuple(UserRole)
STAFF_ROLES = (UserRole.REGISTRADOR, UserRole.ADMIN)
BOOKING_ROLES = (UserRole.RESERVADOR, UserRole.ADMIN)

# path -> roles allowed; None means public
ROUTES: Dict[str, Optional[Tuple[UserRole, ...]]] = {
    "/": None,
    "/login": None,
    "/register": None,
    "/404": None,
    "/dashboard": ANY_ROLE,
    "/registrador/spots": STAFF_ROLES,
    "/registrador/reports": STAFF_ROLES,
    "/reservador/search": BOOKING_ROLES,
    "/reservador/reservations": BOOKING_ROLES,
    "/reservador/vehicles": BOOKING_ROLES,
    "/admin/users": (UserRole.ADMIN,),
    "/admin/plazas": (UserRole.ADMIN,),
    "/admin/plazas/nueva": (UserRole.ADMIN,),
    "/admin/tickets": (UserRole.ADMIN,),
    "/admin/reportes": (UserRole.ADMIN,),
}


class AuthService:
    """Session holder and route guard"""

    def __init__(
        self,
        auth_api=None,
        storage: Optional[ClientStorage] = None,
        notifier: Optional[Notifier] = None,
        users: Optional[List[User]] = None,
        passwords: Optional[Dict[str, str]] = None
    ):
        self.auth_api = auth_api
        self.storage = storage or InMemoryStorage()
        self.notifier = notifier or Notifier()
        self.current_user: Optional[User] = None
        self._directory: Dict[str, User] = {u.email.lower(): u for u in users or []}
        self._passwords: Dict[str, str] = {email.lower(): pw for email, pw in (passwords or {}).items()}
        self._logger = logging.getLogger(self.__class__.__name__)

    @classmethod
    def offline(
        cls,
        records: List[Dict[str, Any]],
        storage: Optional[ClientStorage] = None,
        notifier: Optional[Notifier] = None
    ) -> 'AuthService':
        """
        Offline service seeded from configuration records
        Each record: name, email, role (default reservador), password, id (default u<n>)
        """
        users: List[User] = []
        passwords: Dict[str, str] = {}
        for index, record in enumerate(records, start=1):
            user = User(
                id=str(record.get("id") or f"u{index}"),
                name=record["name"],
                email=record["email"],
                role=UserRole(record.get("role", UserRole.RESERVADOR.value))
            )
            users.append(user)
            if record.get("password"):
                passwords[user.email] = str(record["password"])
        return cls(storage=storage, notifier=notifier, users=users, passwords=passwords)

    @property
    def is_offline(self) -> bool:
        return self.auth_api is None

    @property
    def is_authenticated(self) -> bool:
        return self.current_user is not None

    # ========================================================================
    # SESSION LIFECYCLE
    # ========================================================================

    def login(self, email: str, password: str) -> bool:
        """
        Authenticate and persist the session
        Returns: True on success; failures become a notification
        """
        try:
            request = validate_dto(LoginRequestDTO, {"email": email, "password": password})

            if self.is_offline:
                user = self._directory.get(request.email.lower())
                known_password = self._passwords.get(request.email.lower())
                if user is None or (known_password is not None and known_password != request.password):
                    raise AuthenticationError("Usuario o contraseña incorrectos")
                token = f"offline-{user.id}"
            else:
                login = self.auth_api.login(request)
                user = DataMapper.usuario_to_user(login.user)
                token = login.access_token

            self._start_session(user, token)
            self.notifier.notify("Inicio de sesión exitoso", f"Bienvenido, {user.name}!")
            return True

        except (ValidationError, ApiError) as e:
            self._logger.warning(f"Login failed for {email}: {e.message}")
            self.notifier.error("Error de autenticación", e.message)
            return False
        except Exception as e:
            self._logger.error(f"Error during login: {e}", exc_info=True)
            self.notifier.error(
                "Error de inicio de sesión",
                "Ha ocurrido un error. Por favor intente nuevamente."
            )
            return False

    def register(self, form: Union[RegisterRequestDTO, Dict[str, Any]]) -> bool:
        """Create an account and log it in; only registrador/reservador may self-register"""
        try:
            request = form if isinstance(form, RegisterRequestDTO) else validate_dto(RegisterRequestDTO, form)

            if self.is_offline:
                if request.email.lower() in self._directory:
                    raise ValidationError(
                        "El correo electrónico ya está en uso",
                        {"email": ["El correo electrónico ya está en uso"]}
                    )
                user = User(
                    id=f"u{len(self._directory) + 1}",
                    name=request.nombre,
                    email=request.email,
                    role=UserRole(request.role)
                )
                self._directory[user.email.lower()] = user
                self._passwords[user.email.lower()] = request.password
                token = f"offline-{user.id}"
            else:
                registration = self.auth_api.register(request)
                user = DataMapper.usuario_to_user(registration.user)
                token = registration.access_token

            self._start_session(user, token)
            self.notifier.notify("Registro exitoso", f"Bienvenido, {user.name}!")
            return True

        except (ValidationError, ApiError) as e:
            self._logger.warning(f"Registration failed: {e.message}")
            self.notifier.error("Error de registro", e.message)
            return False
        except Exception as e:
            self._logger.error(f"Error during registration: {e}", exc_info=True)
            self.notifier.error(
                "Error de registro",
                "Ha ocurrido un error. Por favor intente nuevamente."
            )
            return False

    def logout(self) -> None:
        """End the session; local state is cleared even if the backend call fails"""
        try:
            if not self.is_offline and self.storage.get_item(TOKEN_KEY):
                self.auth_api.logout()
        except ApiError as e:
            self._logger.warning(f"Backend logout failed, continuing locally: {e.message}")
        finally:
            self._clear_session()

        self.notifier.notify("Sesión cerrada", "Has cerrado sesión correctamente")

    def get_current_user(self) -> User:
        """
        Fetch the authoritative user record (/me) and refresh the stored copy
        Raises: AuthenticationError without a session, ApiError on backend failure
        """
        if self.is_offline:
            if self.current_user is None:
                raise AuthenticationError("No hay una sesión activa")
            return self.current_user

        user = DataMapper.usuario_to_user(self.auth_api.me())
        self.current_user = user
        self.storage.set_json(USER_KEY, user.to_dict())
        return user

    def verify_token(self) -> bool:
        """True when a token exists and the backend accepts it; otherwise logs out"""
        if not self.storage.get_item(TOKEN_KEY):
            return False

        try:
            self.get_current_user()
            return True
        except ApiError as e:
            self._logger.warning(f"Token verification failed: {e.message}")
            self._clear_session()
            return False

    def restore_session(self) -> Optional[User]:
        """Rebuild the session from storage on start; corrupt entries are discarded"""
        data = self.storage.get_json(USER_KEY)
        if data is None:
            return None

        if not self.storage.get_item(TOKEN_KEY):
            self._logger.info("Stored user without token, discarding session")
            self._clear_session()
            return None

        try:
            self.current_user = User.from_dict(data)
        except (KeyError, ValueError, TypeError) as e:
            self._logger.warning(f"Discarding corrupt stored user: {e}")
            self._clear_session()
            return None

        self._logger.info(f"Session restored for {self.current_user.email}")
        return self.current_user

    def handle_auth_error(self) -> None:
        """Called by the HTTP client on 401: storage is already cleared"""
        if self.current_user is not None:
            self._logger.warning(f"Session expired for {self.current_user.email}")
        self._clear_session()
        self.notifier.error("Sesión expirada", "Inicia sesión nuevamente")

    def _start_session(self, user: User, token: str) -> None:
        self.current_user = user
        self.storage.set_item(TOKEN_KEY, token)
        self.storage.set_json(USER_KEY, user.to_dict())
        self._logger.info(f"Session started for {user.email} ({user.role})")

    def _clear_session(self) -> None:
        self.current_user = None
        self.storage.clear_session()

    # ========================================================================
    # AUTHORIZATION
    # ========================================================================

    def require_role(self, *roles: UserRole) -> User:
        """
        Return the current user if it holds one of the roles
        Raises: AuthenticationError, AuthorizationError
        """
        if self.current_user is None:
            raise AuthenticationError("Debes iniciar sesión")
        if roles and not self.current_user.has_role(*roles):
            raise AuthorizationError([r.value for r in roles], self.current_user.role.value)
        return self.current_user

    def can_access(self, path: str) -> bool:
        return self.resolve_route(path) == self._normalize(path)

    def resolve_route(self, path: str) -> str:
        """
        Where a navigation to path actually lands:
        unknown -> /404, protected without session -> /login,
        wrong role -> /dashboard, "/" with a session -> /dashboard
        """
        path = self._normalize(path)
        if path not in ROUTES:
            return NOT_FOUND_ROUTE

        allowed = ROUTES[path]
        if allowed is None:
            if path == "/" and self.is_authenticated:
                return DASHBOARD_ROUTE
            return path

        if not self.is_authenticated:
            return LOGIN_ROUTE
        if not self.current_user.has_role(*allowed):
            return DASHBOARD_ROUTE
        return path

    @staticmethod
    def _normalize(path: str) -> str:
        path = path.split("?", 1)[0].strip() or "/"
        if len(path) > 1:
            path = path.rstrip("/")
        return path if path.startswith("/") else f"/{path}"
