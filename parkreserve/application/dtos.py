# File: parkreserve/application/dtos.py
"""
Data Transfer Objects (DTOs) for the Parking Reservation Client

This module defines DTOs for data transfer between layers:
1. Envelope DTOs - The backend's {success, data, message, errors} wrapper
2. Backend entity DTOs - Usuario, Estacionamiento, Vehiculo, Ticket, Pago
3. Request DTOs - Bodies sent to the backend
4. Form DTOs - User input validated before it reaches the ledger
5. Report DTOs - Income, statistics and by-status views
6. Real-time DTOs - Payloads received over the real-time channel
7. Error DTOs - Validation and error responses

DTO Principles:
- Validation at creation
- No business logic, only data
- Serialization/deserialization support
"""

from typing import Dict, List, Optional, Any, Literal, Type, TypeVar
from datetime import datetime, date
import json
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from ..domain.exceptions import ValidationError

T = TypeVar('T', bound='BaseDTO')

TicketEstado = Literal['activo', 'finalizado', 'cancelado', 'pagado', 'pendiente']
TipoReserva = Literal['por_horas', 'mensual']
MetodoPago = Literal['efectivo', 'tarjeta', 'transferencia']

# pydantic prefixes messages raised from validators
VALUE_ERROR_PREFIX = "Value error, "


# ============================================================================
# BASE DTO CLASSES
# ============================================================================

class BaseDTO(BaseModel):
    """Base DTO with common functionality"""

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
        use_enum_values=True,
        extra='ignore'
    )

    def to_dict(self, exclude_none: bool = False, **kwargs) -> Dict[str, Any]:
        """Convert DTO to dictionary"""
        return self.model_dump(mode='json', exclude_none=exclude_none, **kwargs)

    def to_json(self, **kwargs) -> str:
        """Convert DTO to JSON string"""
        return self.model_dump_json(**kwargs)

    @classmethod
    def from_dict(cls: Type[T], data: Dict[str, Any]) -> T:
        """Create DTO from dictionary"""
        return cls.model_validate(data)

    @classmethod
    def from_json(cls: Type[T], json_str: str) -> T:
        """Create DTO from JSON string"""
        return cls.model_validate(json.loads(json_str))


def validate_dto(dto_class: Type[T], data: Dict[str, Any]) -> T:
    """
    Build a DTO, converting pydantic's error into the domain ValidationError
    with per-field messages
    """
    try:
        return dto_class.model_validate(data)
    except PydanticValidationError as e:
        field_errors: Dict[str, List[str]] = {}
        for error in e.errors():
            field = ".".join(str(part) for part in error["loc"]) or "__root__"
            message = error["msg"]
            if message.startswith(VALUE_ERROR_PREFIX):
                message = message[len(VALUE_ERROR_PREFIX):]
            field_errors.setdefault(field, []).append(message)
        first = next(iter(field_errors.values()))[0]
        raise ValidationError(first, field_errors) from e


def normalize_plate(value: str) -> str:
    plate = value.strip().upper()
    if not plate:
        raise ValueError("La placa es obligatoria")
    if not plate.replace('-', '').replace(' ', '').isalnum():
        raise ValueError("La placa debe ser alfanumérica")
    return plate


# ============================================================================
# ENVELOPE
# ============================================================================

class ApiResponseDTO(BaseDTO):
    """Backend response envelope"""
    success: bool = Field(description="Success flag")
    data: Optional[Any] = Field(default=None, description="Payload")
    message: Optional[str] = Field(default=None, description="Human readable message")
    errors: Dict[str, List[str]] = Field(default_factory=dict, description="Per-field errors")

    @field_validator('errors', mode='before')
    @classmethod
    def default_errors(cls, v):
        return v or {}


class LoginDataDTO(BaseDTO):
    user: 'UsuarioReservaDTO'
    access_token: str
    token_type: str = "Bearer"


# ============================================================================
# BACKEND ENTITY DTOs
# ============================================================================

class UsuarioReservaDTO(BaseDTO):
    """User record as returned by the backend"""
    id: int
    nombre: str
    apellido: Optional[str] = None
    email: str
    documento: Optional[str] = None
    telefono: Optional[str] = None
    role: Literal['admin', 'registrador', 'reservador'] = 'reservador'
    estado: Literal['activo', 'inactivo'] = 'activo'
    ultimo_acceso: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class EstacionamientoDTO(BaseDTO):
    """Parking lot record (EstacionamientoAdmin)"""
    id: int
    nombre: str
    email: Optional[str] = None
    direccion: str = ""
    espacios_totales: int = 0
    espacios_disponibles: int = 0
    precio_por_hora: float = Field(ge=0)
    precio_mensual: float = 0
    estado: Literal['activo', 'inactivo'] = 'activo'
    usuario_id: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class VehiculoDTO(BaseDTO):
    """Vehicle keyed by its plate"""
    placa: str
    usuario_id: int
    modelo: Optional[str] = None
    color: Optional[str] = None
    estado: Literal['activo', 'inactivo'] = 'activo'
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator('placa')
    @classmethod
    def validate_placa(cls, v):
        return normalize_plate(v)


class TicketDTO(BaseDTO):
    """Backend ticket; the client's reservation"""
    id: int
    usuario_id: int
    vehiculo_id: str
    estacionamiento_id: int
    codigo_ticket: Optional[str] = None
    fecha_entrada: datetime
    fecha_salida: Optional[datetime] = None
    fecha_salida_estimada: Optional[datetime] = None
    precio_total: Optional[float] = None
    estado: TicketEstado = 'activo'
    tipo_reserva: TipoReserva = 'por_horas'
    horas_estimadas: Optional[float] = None
    costo_estimado: Optional[float] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator('precio_total', 'costo_estimado', mode='before')
    @classmethod
    def coerce_amount(cls, v):
        # The admin ticket listing sends amounts as strings
        if v in (None, ""):
            return None
        return float(v)


class PagoDTO(BaseDTO):
    id: int
    ticket_id: int
    usuario_id: int
    monto: float
    metodo_pago: MetodoPago
    estado: Literal['pendiente', 'completado', 'fallido', 'reembolsado'] = 'pendiente'
    fecha_pago: Optional[datetime] = None
    created_at: Optional[datetime] = None


class ReservaResponseDTO(BaseDTO):
    """Result of POST /business/reservas"""
    ticket: TicketDTO
    vehiculo: Optional[VehiculoDTO] = None
    estacionamiento: Optional[EstacionamientoDTO] = None
    precio_estimado: float = 0


class FinalizarReservaResponseDTO(BaseDTO):
    ticket: TicketDTO
    pago: Optional[PagoDTO] = None
    total_pagado: float = 0
    cambio: Optional[float] = None


class CalcularPrecioResponseDTO(BaseDTO):
    precio_estimado: float
    desglose: Dict[str, float] = Field(default_factory=dict)


# ============================================================================
# REQUEST DTOs
# ============================================================================

class LoginRequestDTO(BaseDTO):
    email: str = Field(min_length=3)
    password: str = Field(min_length=1)

    @field_validator('email')
    @classmethod
    def validate_email(cls, v):
        if '@' not in v:
            raise ValueError("Correo electrónico inválido")
        return v.strip()


class RegisterRequestDTO(BaseDTO):
    """Self-registration; only registrador/reservador may be requested"""
    nombre: str = Field(min_length=1)
    apellido: Optional[str] = None
    email: str
    documento: str = Field(min_length=1)
    telefono: Optional[str] = None
    password: str = Field(min_length=6)
    password_confirmation: str
    role: Literal['registrador', 'reservador'] = 'reservador'

    @field_validator('email')
    @classmethod
    def validate_email(cls, v):
        if '@' not in v:
            raise ValueError("Correo electrónico inválido")
        return v.strip()

    @model_validator(mode='after')
    def validate_passwords(self):
        if self.password != self.password_confirmation:
            raise ValueError("Las contraseñas no coinciden")
        return self


class CreateReservaRequestDTO(BaseDTO):
    usuario_id: int
    vehiculo_id: str
    estacionamiento_id: int
    tipo_reserva: TipoReserva = 'por_horas'
    fecha_entrada: Optional[datetime] = None
    fecha_salida_estimada: Optional[datetime] = None
    horas_estimadas: Optional[float] = None
    dias_estimados: Optional[int] = None

    @field_validator('vehiculo_id')
    @classmethod
    def validate_vehiculo(cls, v):
        return normalize_plate(v)


class FinalizarReservaRequestDTO(BaseDTO):
    metodo_pago: MetodoPago = 'efectivo'
    datos_pago: Optional[Dict[str, Any]] = None


class CalcularPrecioRequestDTO(BaseDTO):
    estacionamiento_id: int
    tipo_reserva: TipoReserva = 'por_horas'
    horas_estimadas: Optional[float] = None
    dias_estimados: Optional[int] = None


# ============================================================================
# FORM DTOs
# ============================================================================

class ReservationFormDTO(BaseDTO):
    """Reservation form submitted by a reservador"""
    spot_id: str = Field(min_length=1)
    license_plate: str
    estimated_entry_time: datetime
    estimated_exit_time: datetime

    @field_validator('license_plate')
    @classmethod
    def validate_license_plate(cls, v):
        return normalize_plate(v)

    @model_validator(mode='after')
    def validate_times(self):
        if self.estimated_exit_time <= self.estimated_entry_time:
            raise ValueError("La hora de salida debe ser posterior a la de entrada")
        return self


class SpotFormDTO(BaseDTO):
    """Spot creation/edition form"""
    name: str = Field(min_length=1)
    location: str = Field(min_length=1)
    hourly_rate: int = Field(gt=0)
    type: str = "standard"
    owner_id: Optional[str] = None

    @field_validator('name', 'location')
    @classmethod
    def strip_text(cls, v):
        v = v.strip()
        if not v:
            raise ValueError("Campo obligatorio")
        return v


# ============================================================================
# REPORT DTOs
# ============================================================================

class IncomeDTO(BaseDTO):
    date: date
    amount: float
    reservation_count: int = Field(default=0, alias='reservationCount')


class ReservationStatsDTO(BaseDTO):
    total_reservations: int = 0
    completed_reservations: int = 0
    active_reservations: int = 0
    total_income: float = 0
    average_income: float = 0
    period: str = "week"


class ReservationByStatusDTO(BaseDTO):
    status: str
    count: int = 0
    total_amount: float = 0


# ============================================================================
# REAL-TIME DTOs
# ============================================================================

class SystemMonitorEventDTO(BaseDTO):
    service: str
    status: Literal['active', 'inactive', 'error']
    data: Dict[str, Any] = Field(default_factory=dict)
    received_at: datetime = Field(default_factory=datetime.now)


class ReservaStatusEventDTO(BaseDTO):
    ticket_id: int
    usuario_id: int
    estacionamiento_id: int
    status: Literal['activo', 'finalizado', 'cancelado', 'eliminado']
    tipo_reserva: TipoReserva = 'por_horas'
    action: Literal['created', 'updated', 'deleted', 'finalized']
    timestamp: Optional[datetime] = None


# ============================================================================
# ERROR DTOs
# ============================================================================

class ErrorResponseDTO(BaseDTO):
    """Standard error response DTO"""
    success: bool = Field(default=False, description="Success flag")
    error: str = Field(description="Error message")
    error_code: Optional[str] = Field(default=None, description="Error code")
    status: int = Field(default=0, description="HTTP status, 0 for transport errors")
    timestamp: datetime = Field(default_factory=datetime.now, description="Error timestamp")


class ValidationErrorDTO(BaseDTO):
    """Validation error DTO"""
    success: bool = Field(default=False, description="Success flag")
    error: str = Field(default="Validation failed", description="Error message")
    errors: Dict[str, List[str]] = Field(default_factory=dict, description="Validation errors")
    timestamp: datetime = Field(default_factory=datetime.now, description="Error timestamp")

    @classmethod
    def from_exception(cls, exc: ValidationError) -> 'ValidationErrorDTO':
        return cls(error=exc.message, errors=exc.field_errors)


LoginDataDTO.model_rebuild()
