# File: parkreserve/domain/exceptions.py
"""
Error taxonomy for the parking reservation client

1. ValidationError - Form/DTO rejection, carries per-field messages
2. BusinessRuleError - Reservation limit, spot availability, delete guard
3. NotFoundError - Unknown reservation or spot
4. ApiError - Network/backend failures with the extracted message
5. AuthenticationError / AuthorizationError - Session and role problems

Domain and infrastructure code raise these; application services catch
them at the operation boundary and turn them into user notifications.
"""

from typing import Dict, List, Optional


class ParkReserveError(Exception):
    """Base exception for all parkreserve errors"""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


# ============================================================================
# VALIDATION ERRORS
# ============================================================================

class ValidationError(ParkReserveError):
    """Form or schema rejection, surfaced inline per field"""

    def __init__(self, message: str, field_errors: Optional[Dict[str, List[str]]] = None):
        super().__init__(message)
        self.field_errors = field_errors or {}


# ============================================================================
# BUSINESS RULE ERRORS
# ============================================================================

class BusinessRuleError(ParkReserveError):
    """A business rule rejected the operation; nothing was mutated"""
    title = "Operación no permitida"


class ReservationLimitExceededError(BusinessRuleError):
    title = "Límite de reservaciones"

    def __init__(self, limit: int):
        super().__init__(f"No puedes tener más de {limit} reservaciones activas")
        self.limit = limit


class SpotUnavailableError(BusinessRuleError):
    title = "Plaza no disponible"

    def __init__(self, spot_id: str):
        super().__init__("La plaza seleccionada no está disponible")
        self.spot_id = spot_id


class SpotHasActiveReservationsError(BusinessRuleError):
    title = "No se puede eliminar"

    def __init__(self, spot_id: str):
        super().__init__("Esta plaza tiene reservaciones activas o pendientes")
        self.spot_id = spot_id


class InvalidReservationStateError(BusinessRuleError):
    """Transition not allowed from the reservation's current status"""

    def __init__(self, reservation_id: str, status: str, action: str):
        super().__init__(
            f"No se puede {action} la reservación {reservation_id} en estado '{status}'"
        )
        self.reservation_id = reservation_id
        self.status = status
        self.action = action


# ============================================================================
# NOT FOUND ERRORS
# ============================================================================

class NotFoundError(ParkReserveError):
    title = "Error"


class ReservationNotFoundError(NotFoundError):
    def __init__(self, reservation_id: str):
        super().__init__("Reservación no encontrada")
        self.reservation_id = reservation_id


class SpotNotFoundError(NotFoundError):
    def __init__(self, spot_id: str):
        super().__init__("Plaza no encontrada")
        self.spot_id = spot_id


# ============================================================================
# BACKEND AND SESSION ERRORS
# ============================================================================

class ApiError(ParkReserveError):
    """Network or backend error with the message extracted from the response"""

    def __init__(
        self,
        message: str,
        status: int = 0,
        errors: Optional[Dict[str, List[str]]] = None
    ):
        super().__init__(message)
        self.status = status
        self.errors = errors or {}


class AuthenticationError(ApiError):
    """Expired/invalid token or missing session; forces logout"""

    def __init__(self, message: str = "Sesión expirada, inicia sesión nuevamente", status: int = 401):
        super().__init__(message, status=status)


class AuthorizationError(ParkReserveError):
    """Authenticated user lacks the role required for the operation"""

    def __init__(self, required_roles: List[str], actual_role: Optional[str]):
        super().__init__(
            f"Acceso denegado: se requiere rol {', '.join(required_roles)}"
        )
        self.required_roles = required_roles
        self.actual_role = actual_role
