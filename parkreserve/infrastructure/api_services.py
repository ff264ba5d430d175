# File: parkreserve/infrastructure/api_services.py
"""
REST Resource Services

One class per backend resource. Every method goes through ApiClient,
unwraps the response envelope and returns DTOs:

1. AuthApi - login, register, logout, current user
2. EstacionamientoApi - parking lot CRUD, availability, pricing, reports
3. VehiculoApi - vehicles keyed by plate
4. ReservaApi - reservations (tickets) lifecycle
5. AdminTicketApi - administrative ticket operations
6. UsuarioApi - user administration
7. ReportesApi - income, statistics, reservations by status
"""

from typing import Any, Dict, List, Optional
from datetime import date
import logging

from ..application.dtos import (
    UsuarioReservaDTO, EstacionamientoDTO, VehiculoDTO, TicketDTO,
    LoginDataDTO, LoginRequestDTO, RegisterRequestDTO,
    CreateReservaRequestDTO, ReservaResponseDTO,
    FinalizarReservaRequestDTO, FinalizarReservaResponseDTO,
    CalcularPrecioRequestDTO, CalcularPrecioResponseDTO,
    IncomeDTO, ReservationStatsDTO, ReservationByStatusDTO
)
from .api_client import ApiClient


class ResourceApi:
    """Base class holding the shared client"""

    def __init__(self, client: ApiClient):
        self.client = client
        self._logger = logging.getLogger(self.__class__.__name__)

    def _get_data(self, path: str, failure_message: str, params: Optional[Dict[str, Any]] = None) -> Any:
        return self.client.unwrap(self.client.get(path, params=params), failure_message)

    def _post_data(self, path: str, failure_message: str, data: Optional[Dict[str, Any]] = None) -> Any:
        return self.client.unwrap(self.client.post(path, data), failure_message)

    def _put_data(self, path: str, failure_message: str, data: Optional[Dict[str, Any]] = None) -> Any:
        return self.client.unwrap(self.client.put(path, data), failure_message)

    def _delete(self, path: str, failure_message: str) -> None:
        self.client.unwrap(self.client.delete(path), failure_message)


# ============================================================================
# AUTHENTICATION
# ============================================================================

class AuthApi(ResourceApi):

    def login(self, request: LoginRequestDTO) -> LoginDataDTO:
        """POST /login; stores the access token on success"""
        data = self._post_data('/login', "Error de autenticación", request.to_dict())
        login = LoginDataDTO.from_dict(data)
        self.client.set_auth_token(login.access_token)
        return login

    def register(self, request: RegisterRequestDTO) -> LoginDataDTO:
        data = self._post_data('/register', "Error de registro", request.to_dict(exclude_none=True))
        return LoginDataDTO.from_dict(data)

    def logout(self) -> None:
        self.client.post('/logout')

    def me(self) -> UsuarioReservaDTO:
        data = self._get_data('/me', "No se pudo obtener la información del usuario")
        return UsuarioReservaDTO.from_dict(data)


# ============================================================================
# PARKING LOTS
# ============================================================================

class EstacionamientoApi(ResourceApi):

    def list(self) -> List[EstacionamientoDTO]:
        data = self._get_data('/estacionamientos', "Error obteniendo estacionamientos")
        return [EstacionamientoDTO.from_dict(item) for item in data or []]

    def get(self, estacionamiento_id: int) -> EstacionamientoDTO:
        data = self._get_data(f'/estacionamientos/{estacionamiento_id}', "Estacionamiento no encontrado")
        return EstacionamientoDTO.from_dict(data)

    def create(self, payload: Dict[str, Any]) -> EstacionamientoDTO:
        data = self._post_data('/estacionamientos', "Error creando estacionamiento", payload)
        return EstacionamientoDTO.from_dict(data)

    def update(self, estacionamiento_id: int, payload: Dict[str, Any]) -> EstacionamientoDTO:
        data = self._put_data(
            f'/estacionamientos/{estacionamiento_id}', "Error actualizando estacionamiento", payload
        )
        return EstacionamientoDTO.from_dict(data)

    def delete(self, estacionamiento_id: int) -> None:
        self._delete(f'/estacionamientos/{estacionamiento_id}', "Error eliminando estacionamiento")

    def disponibles(self, filters: Optional[Dict[str, Any]] = None) -> List[EstacionamientoDTO]:
        data = self._get_data(
            '/business/estacionamientos/disponibles',
            "Error obteniendo estacionamientos disponibles",
            params=filters or {}
        )
        items = (data or {}).get('estacionamientos_disponibles', [])
        return [EstacionamientoDTO.from_dict(item) for item in items]

    def calcular_precio(self, request: CalcularPrecioRequestDTO) -> CalcularPrecioResponseDTO:
        data = self._post_data(
            '/business/calcular-precio', "Error calculando precio", request.to_dict(exclude_none=True)
        )
        return CalcularPrecioResponseDTO.from_dict(data)

    def reporte(self, estacionamiento_id: int) -> Dict[str, Any]:
        return self._get_data(
            f'/business/estacionamientos/{estacionamiento_id}/reporte',
            "Error obteniendo reporte del estacionamiento"
        )


# ============================================================================
# VEHICLES
# ============================================================================

class VehiculoApi(ResourceApi):

    def list(self) -> List[VehiculoDTO]:
        data = self._get_data('/vehiculos', "Error obteniendo vehículos")
        return [VehiculoDTO.from_dict(item) for item in data or []]

    def by_user(self, user_id: int) -> List[VehiculoDTO]:
        data = self._get_data(f'/vehiculos/user/{user_id}', "Error obteniendo vehículos del usuario")
        return [VehiculoDTO.from_dict(item) for item in data or []]

    def by_placa(self, placa: str) -> VehiculoDTO:
        data = self._get_data(f'/vehiculos/placa/{placa}', "Vehículo no encontrado")
        return VehiculoDTO.from_dict(data)

    def create(self, vehiculo: VehiculoDTO) -> VehiculoDTO:
        data = self._post_data('/vehiculos', "Error creando vehículo", vehiculo.to_dict(exclude_none=True))
        return VehiculoDTO.from_dict(data)

    def update(self, placa: str, payload: Dict[str, Any]) -> VehiculoDTO:
        data = self._put_data(f'/vehiculos/{placa}', "Error actualizando vehículo", payload)
        return VehiculoDTO.from_dict(data)

    def delete(self, placa: str) -> None:
        self._delete(f'/vehiculos/{placa}', "Error eliminando vehículo")


# ============================================================================
# RESERVATIONS
# ============================================================================

class ReservaApi(ResourceApi):

    def crear(self, request: CreateReservaRequestDTO) -> ReservaResponseDTO:
        data = self._post_data(
            '/business/reservas', "No se pudo crear la reserva", request.to_dict(exclude_none=True)
        )
        return ReservaResponseDTO.from_dict(data)

    def finalizar(self, ticket_id: int, request: Optional[FinalizarReservaRequestDTO] = None) -> FinalizarReservaResponseDTO:
        request = request or FinalizarReservaRequestDTO()
        data = self._post_data(
            f'/business/reservas/{ticket_id}/finalizar',
            "No se pudo finalizar la reserva",
            request.to_dict(exclude_none=True)
        )
        return FinalizarReservaResponseDTO.from_dict(data)

    def cancelar(self, ticket_id: int, motivo: Optional[str] = None) -> None:
        self._post_data(
            f'/business/reservas/{ticket_id}/cancelar',
            "No se pudo cancelar la reserva",
            {'motivo': motivo or 'Cancelación solicitada por el usuario'}
        )

    def by_user(self, user_id: int) -> List[TicketDTO]:
        data = self._get_data(f'/tickets/user/{user_id}', "Error obteniendo reservas del usuario")
        return [TicketDTO.from_dict(item) for item in data or []]

    def all(self) -> List[TicketDTO]:
        data = self._get_data('/tickets', "Error obteniendo tickets")
        return [TicketDTO.from_dict(item) for item in data or []]


class AdminTicketApi(ResourceApi):

    def active(self) -> List[TicketDTO]:
        data = self._get_data('/tickets/active/list', "Error al obtener los tickets activos")
        return [TicketDTO.from_dict(item) for item in data or []]

    def finalize(self, ticket_id: int) -> None:
        self._post_data(f'/tickets/{ticket_id}/finalize', "Error al finalizar el ticket")

    def update_status(self, ticket_id: int, estado: str) -> None:
        self._put_data(f'/tickets/{ticket_id}', "Error al actualizar el ticket", {'estado': estado})

    def by_code(self, codigo: str) -> Optional[TicketDTO]:
        """Ticket by its code, None when the backend does not know it"""
        data = self.client.get(f'/tickets/code/{codigo}')
        if not isinstance(data, dict) or not data.get('success') or not data.get('data'):
            return None
        return TicketDTO.from_dict(data['data'])


# ============================================================================
# USERS
# ============================================================================

class UsuarioApi(ResourceApi):

    def list(self) -> List[UsuarioReservaDTO]:
        data = self._get_data('/usuarios', "Error al obtener usuarios")
        return [UsuarioReservaDTO.from_dict(item) for item in data or []]

    def get(self, user_id: int) -> UsuarioReservaDTO:
        return UsuarioReservaDTO.from_dict(self._get_data(f'/usuarios/{user_id}', "Usuario no encontrado"))

    def create(self, payload: Dict[str, Any]) -> UsuarioReservaDTO:
        return UsuarioReservaDTO.from_dict(self._post_data('/usuarios', "Error al crear usuario", payload))

    def update(self, user_id: int, payload: Dict[str, Any]) -> UsuarioReservaDTO:
        data = self._put_data(f'/usuarios/{user_id}', "Error al actualizar usuario", payload)
        return UsuarioReservaDTO.from_dict(data)

    def delete(self, user_id: int) -> None:
        self._delete(f'/usuarios/{user_id}', "Error al eliminar usuario")

    def by_role(self, role: str) -> List[UsuarioReservaDTO]:
        data = self._get_data(f'/usuarios/role/{role}', "Error al obtener usuarios por rol")
        return [UsuarioReservaDTO.from_dict(item) for item in data or []]

    def change_role(self, user_id: int, role: str) -> UsuarioReservaDTO:
        data = self._put_data(f'/usuarios/{user_id}/role', "Error al cambiar el rol", {'role': role})
        return UsuarioReservaDTO.from_dict(data)

    def role_stats(self) -> Dict[str, int]:
        return self._get_data('/usuarios/stats/roles', "Error al obtener estadísticas") or {}


# ============================================================================
# REPORTS
# ============================================================================

class ReportesApi(ResourceApi):

    def ingresos(self, user_id: int, start_date: date, end_date: date, group_by: str = 'day') -> List[IncomeDTO]:
        data = self._get_data(
            '/business/reportes/ingresos',
            "Error al obtener el reporte de ingresos",
            params={
                'user_id': user_id,
                'start_date': start_date.isoformat(),
                'end_date': end_date.isoformat(),
                'group_by': group_by
            }
        )
        return [IncomeDTO.from_dict(item) for item in data or []]

    def estadisticas(self, user_id: int, period: str = 'week') -> Optional[ReservationStatsDTO]:
        data = self._get_data(
            '/business/reportes/estadisticas',
            "Error al obtener estadísticas de reservas",
            params={'user_id': user_id, 'period': period}
        )
        return ReservationStatsDTO.from_dict(data) if data else None

    def reservas_por_estado(self, user_id: int, start_date: date, end_date: date) -> List[ReservationByStatusDTO]:
        data = self._get_data(
            '/business/reportes/reservas-por-estado',
            "Error al obtener reporte por estado",
            params={
                'user_id': user_id,
                'start_date': start_date.isoformat(),
                'end_date': end_date.isoformat()
            }
        )
        return [ReservationByStatusDTO.from_dict(item) for item in data or []]


class BackendApi:
    """All resource services sharing one client"""

    def __init__(self, client: ApiClient):
        self.client = client
        self.auth = AuthApi(client)
        self.estacionamientos = EstacionamientoApi(client)
        self.vehiculos = VehiculoApi(client)
        self.reservas = ReservaApi(client)
        self.admin_tickets = AdminTicketApi(client)
        self.usuarios = UsuarioApi(client)
        self.reportes = ReportesApi(client)
