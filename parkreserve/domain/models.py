# File: parkreserve/domain/models.py
"""
Domain Models for the Parking Reservation Client

This module contains:
1. Enums: Roles, spot statuses and reservation statuses
2. Value Objects: TimeRange, ReportFilter, Income, TicketInfo
3. Entities: User, ParkingSpot, Reservation
4. Domain Events: Raised by the reservation ledger on every state change

Spot status is never edited directly; it follows the reservation lifecycle.
"""

from dataclasses import dataclass, field
from typing import Optional, List, Dict, Any, Tuple
from datetime import datetime, date, timedelta
from enum import Enum
import uuid


# ============================================================================
# ENUMS
# ============================================================================

class UserRole(str, Enum):
    """
    Three-role model
    admin manages users and tickets, registrador owns spots,
    reservador books them
    """
    ADMIN = "admin"
    REGISTRADOR = "registrador"
    RESERVADOR = "reservador"

    def __str__(self) -> str:
        return self.value


class SpotStatus(str, Enum):
    AVAILABLE = "available"
    OCCUPIED = "occupied"
    RESERVED = "reserved"

    def __str__(self) -> str:
        return self.value


class ReservationStatus(str, Enum):
    """Reservation lifecycle states"""
    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        """Completed and cancelled reservations never change again"""
        return self in (ReservationStatus.COMPLETED, ReservationStatus.CANCELLED)

    @property
    def holds_spot(self) -> bool:
        return not self.is_terminal

    def __str__(self) -> str:
        return self.value


# ============================================================================
# VALUE OBJECTS
# ============================================================================

@dataclass(frozen=True)
class TimeRange:
    """
    Value Object: Time range with start and end times
    Provides duration calculation and validation
    """
    start_time: datetime
    end_time: datetime

    def __post_init__(self):
        """Validate time range"""
        if self.end_time <= self.start_time:
            raise ValueError("End time must be after start time")

    @property
    def duration(self) -> timedelta:
        return self.end_time - self.start_time

    @property
    def duration_hours(self) -> float:
        """Get duration in hours"""
        return self.duration.total_seconds() / 3600

    def contains(self, moment: datetime) -> bool:
        return self.start_time <= moment <= self.end_time

    def __str__(self) -> str:
        start_str = self.start_time.strftime("%Y-%m-%d %H:%M")
        end_str = self.end_time.strftime("%Y-%m-%d %H:%M")
        return f"{start_str} to {end_str} ({self.duration_hours:.1f} hours)"


@dataclass(frozen=True)
class ReportFilter:
    """Date window (inclusive, by day) and optional spot subset for income reports"""
    start_date: date
    end_date: date
    spot_ids: Optional[Tuple[str, ...]] = None

    def __post_init__(self):
        if self.end_date < self.start_date:
            raise ValueError("End date cannot be before start date")
        if self.spot_ids is not None and not isinstance(self.spot_ids, tuple):
            object.__setattr__(self, 'spot_ids', tuple(self.spot_ids))

    def includes_day(self, day: date) -> bool:
        return self.start_date <= day <= self.end_date

    def includes_spot(self, spot_id: str) -> bool:
        return not self.spot_ids or spot_id in self.spot_ids


@dataclass(frozen=True)
class Income:
    """Aggregated income for one day; recomputed per query, never stored"""
    date: date
    amount: int
    reservation_count: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date": self.date.isoformat(),
            "amount": self.amount,
            "reservationCount": self.reservation_count
        }


@dataclass(frozen=True)
class TicketInfo:
    """Printable ticket for a reservation"""
    reservation_id: str
    user_name: str
    license_plate: str
    spot_name: str
    entry_time: Optional[datetime]
    estimated_entry_time: datetime
    estimated_exit_time: datetime
    estimated_cost: int
    fiscal_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "reservation_id": self.reservation_id,
            "user_name": self.user_name,
            "license_plate": self.license_plate,
            "spot_name": self.spot_name,
            "entry_time": self.entry_time.isoformat() if self.entry_time else None,
            "estimated_entry_time": self.estimated_entry_time.isoformat(),
            "estimated_exit_time": self.estimated_exit_time.isoformat(),
            "estimated_cost": self.estimated_cost,
            "fiscal_id": self.fiscal_id
        }


# ============================================================================
# DOMAIN ENTITIES
# ============================================================================

class Entity:
    """
    Base class for all domain entities
    Provides common functionality for entities with identity
    """

    def __init__(self, id: Optional[str] = None):
        self._id = id or str(uuid.uuid4())

    @property
    def id(self) -> str:
        """Get entity ID"""
        return self._id

    def __eq__(self, other: object) -> bool:
        """Entities are equal if they have the same ID and type"""
        if not isinstance(other, Entity):
            return False
        return self.id == other.id and type(self) == type(other)

    def __hash__(self) -> int:
        return hash((self.id, type(self).__name__))

    def __repr__(self) -> str:
        return f"{type(self).__name__}(id={self.id})"


class User(Entity):
    """
    Entity: Authenticated person
    The role always comes from the authoritative user record
    """

    def __init__(self, id: str, name: str, email: str, role: UserRole):
        super().__init__(id)
        self.name = name
        self.email = email
        self.role = UserRole(role)

        if not self.email or '@' not in self.email:
            raise ValueError(f"Invalid email address: {self.email}")

    def has_role(self, *roles: UserRole) -> bool:
        return self.role in roles

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "role": self.role.value
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'User':
        return cls(
            id=str(data["id"]),
            name=data["name"],
            email=data["email"],
            role=UserRole(data["role"])
        )

    def __str__(self) -> str:
        return f"{self.name} <{self.email}> ({self.role})"


class ParkingSpot(Entity):
    """
    Entity: A single parking space with a rate and status
    Owned by a registrador; status transitions come from the ledger only
    """

    def __init__(
        self,
        name: str,
        location: str,
        hourly_rate: int,
        type: str = "standard",
        owner_id: Optional[str] = None,
        status: SpotStatus = SpotStatus.AVAILABLE,
        id: Optional[str] = None
    ):
        super().__init__(id)
        self.name = name
        self.location = location
        self.hourly_rate = hourly_rate
        self.type = type
        self.owner_id = owner_id
        self.status = SpotStatus(status)

        self._validate()

    def _validate(self) -> None:
        if not self.name or not self.name.strip():
            raise ValueError("Spot name cannot be empty")

        if self.hourly_rate < 0:
            raise ValueError(f"Hourly rate cannot be negative: {self.hourly_rate}")

    @property
    def is_available(self) -> bool:
        return self.status == SpotStatus.AVAILABLE

    def copy(self) -> 'ParkingSpot':
        return ParkingSpot(
            name=self.name,
            location=self.location,
            hourly_rate=self.hourly_rate,
            type=self.type,
            owner_id=self.owner_id,
            status=self.status,
            id=self.id
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "location": self.location,
            "hourly_rate": self.hourly_rate,
            "type": self.type,
            "status": self.status.value,
            "owner_id": self.owner_id
        }

    def __str__(self) -> str:
        return f"{self.name} ({self.location}) - {self.status}"


class Reservation(Entity):
    """
    Entity: Booking of a spot by a user

    Invariants:
    - estimated_exit_time > estimated_entry_time
    - total_cost is set only when status is completed by register_exit
    - entry_time is set only when status is active or completed
    """

    def __init__(
        self,
        user_id: str,
        spot_id: str,
        license_plate: str,
        estimated_entry_time: datetime,
        estimated_exit_time: datetime,
        status: ReservationStatus = ReservationStatus.PENDING,
        entry_time: Optional[datetime] = None,
        exit_time: Optional[datetime] = None,
        total_cost: Optional[int] = None,
        id: Optional[str] = None
    ):
        super().__init__(id)
        self.user_id = user_id
        self.spot_id = spot_id
        self.license_plate = license_plate.strip().upper()
        self.estimated = TimeRange(estimated_entry_time, estimated_exit_time)
        self.status = ReservationStatus(status)
        self.entry_time = entry_time
        self.exit_time = exit_time
        self.total_cost = total_cost

        if not self.license_plate:
            raise ValueError("License plate cannot be empty")

    @property
    def estimated_entry_time(self) -> datetime:
        return self.estimated.start_time

    @property
    def estimated_exit_time(self) -> datetime:
        return self.estimated.end_time

    @property
    def is_open(self) -> bool:
        """Pending or active reservations hold their spot"""
        return self.status.holds_spot

    def copy(self) -> 'Reservation':
        return Reservation(
            user_id=self.user_id,
            spot_id=self.spot_id,
            license_plate=self.license_plate,
            estimated_entry_time=self.estimated_entry_time,
            estimated_exit_time=self.estimated_exit_time,
            status=self.status,
            entry_time=self.entry_time,
            exit_time=self.exit_time,
            total_cost=self.total_cost,
            id=self.id
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "spot_id": self.spot_id,
            "license_plate": self.license_plate,
            "estimated_entry_time": self.estimated_entry_time.isoformat(),
            "estimated_exit_time": self.estimated_exit_time.isoformat(),
            "entry_time": self.entry_time.isoformat() if self.entry_time else None,
            "exit_time": self.exit_time.isoformat() if self.exit_time else None,
            "status": self.status.value,
            "total_cost": self.total_cost
        }

    def __str__(self) -> str:
        return f"Reservation {self.id} [{self.status}] {self.license_plate} @ {self.spot_id}"


# ============================================================================
# DOMAIN EVENTS
# ============================================================================

@dataclass
class DomainEvent:
    """Base class for events raised by the ledger"""
    aggregate_id: str
    occurred_at: datetime = field(default_factory=datetime.now)
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    @property
    def name(self) -> str:
        return type(self).__name__

    def to_dict(self) -> Dict[str, Any]:
        data = {k: v for k, v in self.__dict__.items()}
        data["event"] = self.name
        data["occurred_at"] = self.occurred_at.isoformat()
        return data

    def __str__(self) -> str:
        return f"{self.name}({self.aggregate_id})"


@dataclass
class ReservationCreated(DomainEvent):
    spot_id: str = ""
    user_id: str = ""


@dataclass
class ReservationCancelled(DomainEvent):
    spot_id: str = ""


@dataclass
class EntryRegistered(DomainEvent):
    spot_id: str = ""


@dataclass
class ExitRegistered(DomainEvent):
    spot_id: str = ""
    total_cost: int = 0


@dataclass
class ReservationCompleted(DomainEvent):
    spot_id: str = ""


@dataclass
class SpotAdded(DomainEvent):
    spot_name: str = ""


@dataclass
class SpotUpdated(DomainEvent):
    changes: Dict[str, Any] = field(default_factory=dict)


@dataclass
class SpotDeleted(DomainEvent):
    pass


# ============================================================================
# DOMAIN FUNCTIONS
# ============================================================================

def count_open_reservations(reservations: List[Reservation], user_id: str) -> int:
    """Count pending and active reservations held by a user"""
    return sum(1 for r in reservations if r.user_id == user_id and r.is_open)
