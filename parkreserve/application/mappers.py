# File: parkreserve/application/mappers.py
"""
Backend <-> domain mappers

The backend speaks Spanish entities (usuarios, estacionamientos, tickets);
the ledger works with User, ParkingSpot and Reservation. DataMapper is the
only place that knows both vocabularies.
"""

from typing import Any, Dict, List, Optional
from datetime import datetime, timedelta
import math

from ..domain.models import (
    User, UserRole, ParkingSpot, Reservation, Income,
    SpotStatus, ReservationStatus
)
from .dtos import (
    UsuarioReservaDTO, EstacionamientoDTO, TicketDTO, IncomeDTO,
    ReservationFormDTO, SpotFormDTO, CreateReservaRequestDTO
)

DEFAULT_ESTIMATED_STAY = timedelta(hours=2)
MONTHLY_HOURS = 160

TICKET_STATUS_MAP = {
    'pendiente': ReservationStatus.PENDING,
    'activo': ReservationStatus.ACTIVE,
    'finalizado': ReservationStatus.COMPLETED,
    'cancelado': ReservationStatus.CANCELLED,
    'pagado': ReservationStatus.COMPLETED,
}


class DataMapper:
    """Stateless conversions between backend DTOs and domain objects"""

    @staticmethod
    def usuario_to_user(usuario: UsuarioReservaDTO) -> User:
        """The role comes from the backend record, never from the email"""
        return User(
            id=str(usuario.id),
            name=usuario.nombre,
            email=usuario.email,
            role=UserRole(usuario.role)
        )

    @staticmethod
    def estacionamiento_to_spot(estacionamiento: EstacionamientoDTO) -> ParkingSpot:
        return ParkingSpot(
            id=str(estacionamiento.id),
            name=estacionamiento.nombre,
            location=estacionamiento.direccion,
            hourly_rate=int(math.ceil(estacionamiento.precio_por_hora)),
            type="standard",
            owner_id=str(estacionamiento.usuario_id) if estacionamiento.usuario_id is not None else None,
            status=SpotStatus.AVAILABLE if estacionamiento.estado == 'activo' else SpotStatus.OCCUPIED
        )

    @staticmethod
    def spot_to_estacionamiento(
        spot: SpotFormDTO,
        email: str = "",
        espacios_totales: int = 20,
        espacios_disponibles: Optional[int] = None,
        precio_mensual: Optional[float] = None
    ) -> Dict[str, Any]:
        """Payload for POST/PUT /estacionamientos"""
        payload = {
            'nombre': spot.name,
            'direccion': spot.location,
            'precio_por_hora': spot.hourly_rate,
            'precio_mensual': precio_mensual or spot.hourly_rate * MONTHLY_HOURS,
            'espacios_totales': espacios_totales,
            'espacios_disponibles': espacios_totales if espacios_disponibles is None else espacios_disponibles,
            'estado': 'activo',
            'email': email,
        }
        if spot.owner_id and spot.owner_id.isdigit():
            payload['usuario_id'] = int(spot.owner_id)
        return payload

    @staticmethod
    def spot_updates_to_estacionamiento(updates: Dict[str, Any]) -> Dict[str, Any]:
        """Partial payload for PUT /estacionamientos/{id}"""
        field_map = {
            'name': 'nombre',
            'location': 'direccion',
            'hourly_rate': 'precio_por_hora',
        }
        return {field_map[key]: value for key, value in updates.items() if key in field_map}

    @classmethod
    def ticket_to_reservation(cls, ticket: TicketDTO) -> Reservation:
        status = TICKET_STATUS_MAP.get(ticket.estado, ReservationStatus.ACTIVE)

        estimated_entry = ticket.fecha_entrada
        estimated_exit = cls._estimated_exit(ticket)

        entered = status in (ReservationStatus.ACTIVE, ReservationStatus.COMPLETED)
        completed = status == ReservationStatus.COMPLETED

        total_cost = None
        if completed and ticket.precio_total is not None:
            total_cost = int(math.ceil(ticket.precio_total))

        return Reservation(
            id=str(ticket.id),
            user_id=str(ticket.usuario_id),
            spot_id=str(ticket.estacionamiento_id),
            license_plate=ticket.vehiculo_id,
            estimated_entry_time=estimated_entry,
            estimated_exit_time=estimated_exit,
            status=status,
            entry_time=ticket.fecha_entrada if entered else None,
            exit_time=ticket.fecha_salida if completed else None,
            total_cost=total_cost
        )

    @staticmethod
    def _estimated_exit(ticket: TicketDTO) -> datetime:
        entry = ticket.fecha_entrada
        if ticket.fecha_salida_estimada and ticket.fecha_salida_estimada > entry:
            return ticket.fecha_salida_estimada
        if ticket.fecha_salida and ticket.fecha_salida > entry:
            return ticket.fecha_salida
        if ticket.horas_estimadas and ticket.horas_estimadas > 0:
            return entry + timedelta(hours=ticket.horas_estimadas)
        return entry + DEFAULT_ESTIMATED_STAY

    @staticmethod
    def reservation_form_to_request(
        form: ReservationFormDTO,
        user_id: str,
        tipo_reserva: str = 'por_horas'
    ) -> CreateReservaRequestDTO:
        hours = (form.estimated_exit_time - form.estimated_entry_time).total_seconds() / 3600
        return CreateReservaRequestDTO(
            usuario_id=int(user_id),
            vehiculo_id=form.license_plate,
            estacionamiento_id=int(form.spot_id),
            tipo_reserva=tipo_reserva,
            fecha_entrada=form.estimated_entry_time,
            fecha_salida_estimada=form.estimated_exit_time,
            horas_estimadas=max(1, math.ceil(hours))
        )

    @staticmethod
    def income_dto_to_income(dto: IncomeDTO) -> Income:
        return Income(
            date=dto.date,
            amount=int(math.ceil(dto.amount)),
            reservation_count=dto.reservation_count
        )

    @classmethod
    def map_estacionamientos(cls, items: List[EstacionamientoDTO]) -> List[ParkingSpot]:
        return [cls.estacionamiento_to_spot(item) for item in items]

    @classmethod
    def map_tickets(cls, items: List[TicketDTO]) -> List[Reservation]:
        return [cls.ticket_to_reservation(item) for item in items]
