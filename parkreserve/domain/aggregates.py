# File: parkreserve/domain/aggregates.py
"""
Aggregate Roots for the Parking Reservation Client
Following Domain-Driven Design (DDD) Aggregate Pattern

Aggregates:
1. SpotRegistry - Tracks which spots exist and their current status
2. ReservationLedger - Owns the registry and the reservations, enforces
   the lifecycle and the spot/reservation invariant

Key Concepts:
- Aggregate Roots enforce business invariants before mutating anything
- Spot status is only changed by the ledger as a side effect of
  reservation transitions
- Domain events are raised for every state change
- snapshot()/restore() give the application layer rollback on failure
"""

from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple
from datetime import datetime
import itertools
import logging

from .models import (
    Entity, ParkingSpot, Reservation, TicketInfo,
    SpotStatus, ReservationStatus, DomainEvent,
    ReservationCreated, ReservationCancelled, EntryRegistered,
    ExitRegistered, ReservationCompleted, SpotAdded, SpotUpdated, SpotDeleted,
    count_open_reservations
)
from .pricing import calculate_estimated_cost, calculate_stay_cost
from .exceptions import (
    ReservationLimitExceededError, SpotUnavailableError,
    SpotHasActiveReservationsError, InvalidReservationStateError,
    ReservationNotFoundError, SpotNotFoundError
)

DEFAULT_MAX_ACTIVE_RESERVATIONS = 3

# Fields of a spot that may be edited through update_spot
EDITABLE_SPOT_FIELDS = ("name", "location", "hourly_rate", "type", "owner_id")

LedgerSnapshot = Tuple[Dict[str, ParkingSpot], Dict[str, Reservation], int, int]


# ============================================================================
# BASE AGGREGATE ROOT
# ============================================================================

class AggregateRoot(Entity):
    """
    Base class for all aggregate roots
    Provides domain event collection and versioning
    """

    def __init__(self, id: Optional[str] = None):
        super().__init__(id)
        self._version: int = 1
        self._changes: List[DomainEvent] = []
        self._logger = logging.getLogger(self.__class__.__name__)

    @property
    def version(self) -> int:
        """Get current aggregate version"""
        return self._version

    def _increment_version(self) -> None:
        self._version += 1

    def _add_domain_event(self, event: DomainEvent) -> None:
        """Add a domain event to the list of changes"""
        self._changes.append(event)
        self._logger.debug(f"Added domain event: {event}")

    def clear_events(self) -> List[DomainEvent]:
        """Clear and return all domain events"""
        events = self._changes.copy()
        self._changes.clear()
        return events

    @property
    def has_changes(self) -> bool:
        return len(self._changes) > 0


# ============================================================================
# SPOT REGISTRY
# ============================================================================

class SpotRegistry(AggregateRoot):
    """
    In-memory registry of parking spots

    Status is read-only from the outside: set_status is reserved for the
    ReservationLedger, which keeps it consistent with the reservations.
    """

    def __init__(self, spots: Optional[List[ParkingSpot]] = None):
        super().__init__("spot-registry")
        self._spots: Dict[str, ParkingSpot] = {}
        self._sequence = itertools.count(1)
        for spot in spots or []:
            self._spots[spot.id] = spot
        self._sync_sequence()

    def _sync_sequence(self) -> None:
        """Keep generated ids (p<n>) clear of ids already present"""
        highest = 0
        for spot_id in self._spots:
            if spot_id.startswith("p") and spot_id[1:].isdigit():
                highest = max(highest, int(spot_id[1:]))
        self._sequence = itertools.count(highest + 1)

    def _next_id(self) -> str:
        while True:
            candidate = f"p{next(self._sequence)}"
            if candidate not in self._spots:
                return candidate

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, spot_id: str) -> Optional[ParkingSpot]:
        return self._spots.get(spot_id)

    def require(self, spot_id: str) -> ParkingSpot:
        """Get a spot or raise SpotNotFoundError"""
        spot = self._spots.get(spot_id)
        if spot is None:
            raise SpotNotFoundError(spot_id)
        return spot

    def all(self) -> List[ParkingSpot]:
        return list(self._spots.values())

    def by_owner(self, owner_id: str) -> List[ParkingSpot]:
        return [s for s in self._spots.values() if s.owner_id == owner_id]

    def available(self) -> List[ParkingSpot]:
        return [s for s in self._spots.values() if s.is_available]

    def __contains__(self, spot_id: str) -> bool:
        return spot_id in self._spots

    def __len__(self) -> int:
        return len(self._spots)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def add_spot(
        self,
        name: str,
        location: str,
        hourly_rate: int,
        type: str = "standard",
        owner_id: Optional[str] = None,
        spot_id: Optional[str] = None
    ) -> ParkingSpot:
        """Add a new spot; new spots always start available"""
        if spot_id is not None and spot_id in self._spots:
            raise ValueError(f"Spot {spot_id} already exists")

        spot = ParkingSpot(
            name=name,
            location=location,
            hourly_rate=hourly_rate,
            type=type,
            owner_id=owner_id,
            status=SpotStatus.AVAILABLE,
            id=spot_id or self._next_id()
        )
        self._spots[spot.id] = spot
        self._increment_version()
        self._add_domain_event(SpotAdded(aggregate_id=spot.id, spot_name=spot.name))
        self._logger.info(f"Spot added: {spot.id} ({spot.name})")
        return spot

    def update_spot(self, spot_id: str, **updates: Any) -> ParkingSpot:
        """
        Partially update a spot
        Raises: SpotNotFoundError, ValueError for non-editable fields
        """
        spot = self.require(spot_id)

        unknown = set(updates) - set(EDITABLE_SPOT_FIELDS)
        if unknown:
            raise ValueError(f"Fields not editable: {', '.join(sorted(unknown))}")

        candidate = spot.copy()
        for key, value in updates.items():
            setattr(candidate, key, value)
        candidate._validate()

        for key, value in updates.items():
            setattr(spot, key, value)

        self._increment_version()
        self._add_domain_event(SpotUpdated(aggregate_id=spot_id, changes=dict(updates)))
        self._logger.info(f"Spot updated: {spot_id} {sorted(updates)}")
        return spot

    def remove_spot(self, spot_id: str) -> ParkingSpot:
        """Remove a spot without any reservation check (ledger does the guard)"""
        spot = self.require(spot_id)
        del self._spots[spot_id]
        self._increment_version()
        self._add_domain_event(SpotDeleted(aggregate_id=spot_id))
        self._logger.info(f"Spot deleted: {spot_id}")
        return spot

    def set_status(self, spot_id: str, status: SpotStatus) -> None:
        spot = self.require(spot_id)
        spot.status = status
        self._increment_version()

    # ------------------------------------------------------------------
    # Snapshot support
    # ------------------------------------------------------------------

    def _snapshot(self) -> Dict[str, ParkingSpot]:
        return {spot_id: spot.copy() for spot_id, spot in self._spots.items()}

    def _restore(self, spots: Dict[str, ParkingSpot]) -> None:
        self._spots = {spot_id: spot.copy() for spot_id, spot in spots.items()}
        self._sync_sequence()


# ============================================================================
# RESERVATION LEDGER
# ============================================================================

class ReservationLedger(AggregateRoot):
    """
    Reservation Ledger

    State machine:
        pending --cancel--> cancelled
        pending --register_entry--> active
        active  --register_exit--> completed
        pending/active --complete (admin)--> completed

    Registry invariant, held after every public method:
        reserved  <=> exactly one pending reservation on the spot
        occupied  <=> exactly one active reservation on the spot
        available <=> no pending/active reservation on the spot

    Every mutation validates first and mutates second, so a rejected
    operation leaves both the ledger and the registry untouched.
    """

    def __init__(
        self,
        registry: Optional[SpotRegistry] = None,
        max_active_reservations: int = DEFAULT_MAX_ACTIVE_RESERVATIONS,
        now: Callable[[], datetime] = datetime.now
    ):
        super().__init__("reservation-ledger")
        if max_active_reservations < 1:
            raise ValueError("max_active_reservations must be at least 1")

        self.spots = registry or SpotRegistry()
        self.max_active_reservations = max_active_reservations
        self._now = now
        self._reservations: Dict[str, Reservation] = {}
        self._sequence = itertools.count(1)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def reservations(self) -> List[Reservation]:
        return list(self._reservations.values())

    def get(self, reservation_id: str) -> Optional[Reservation]:
        return self._reservations.get(reservation_id)

    def require(self, reservation_id: str) -> Reservation:
        reservation = self._reservations.get(reservation_id)
        if reservation is None:
            raise ReservationNotFoundError(reservation_id)
        return reservation

    def get_user_reservations(self, user_id: str) -> List[Reservation]:
        return [r for r in self._reservations.values() if r.user_id == user_id]

    def get_spots_by_owner(self, owner_id: str) -> List[ParkingSpot]:
        return self.spots.by_owner(owner_id)

    def get_user_active_reservation_count(self, user_id: str) -> int:
        """Pending plus active reservations held by the user"""
        return count_open_reservations(self.reservations, user_id)

    def open_reservations_for_spot(self, spot_id: str) -> List[Reservation]:
        return [r for r in self._reservations.values() if r.spot_id == spot_id and r.is_open]

    def can_create_reservation(self, user_id: str, spot_id: str) -> None:
        """
        Check the creation rules without mutating anything
        Raises: ReservationLimitExceededError, SpotUnavailableError
        """
        if self.get_user_active_reservation_count(user_id) >= self.max_active_reservations:
            raise ReservationLimitExceededError(self.max_active_reservations)

        spot = self.spots.get(spot_id)
        if spot is None or not spot.is_available:
            raise SpotUnavailableError(spot_id)

    def estimate_cost(self, spot_id: str, entry: datetime, exit: datetime) -> int:
        """Pre-reservation estimate shown to the user"""
        spot = self.spots.require(spot_id)
        return calculate_estimated_cost(entry, exit, spot.hourly_rate)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def create_reservation(
        self,
        user_id: str,
        spot_id: str,
        license_plate: str,
        estimated_entry_time: datetime,
        estimated_exit_time: datetime,
        reservation_id: Optional[str] = None
    ) -> Reservation:
        """
        Create a pending reservation and mark the spot reserved

        Raises: ReservationLimitExceededError, SpotUnavailableError,
                ValueError for an invalid time range or plate
        """
        self.can_create_reservation(user_id, spot_id)

        reservation = Reservation(
            user_id=user_id,
            spot_id=spot_id,
            license_plate=license_plate,
            estimated_entry_time=estimated_entry_time,
            estimated_exit_time=estimated_exit_time,
            status=ReservationStatus.PENDING,
            id=reservation_id or self._next_id()
        )
        if reservation.id in self._reservations:
            raise ValueError(f"Reservation {reservation.id} already exists")

        self._reservations[reservation.id] = reservation
        self.spots.set_status(spot_id, SpotStatus.RESERVED)

        self._increment_version()
        self._add_domain_event(ReservationCreated(
            aggregate_id=reservation.id, spot_id=spot_id, user_id=user_id
        ))
        self._logger.info(f"Reservation created: {reservation.id} on spot {spot_id} for user {user_id}")
        return reservation

    def cancel_reservation(self, reservation_id: str) -> Reservation:
        """
        pending -> cancelled, spot back to available; total_cost stays None
        Raises: ReservationNotFoundError, InvalidReservationStateError
        """
        reservation = self.require(reservation_id)
        self._require_status(reservation, "cancelar", ReservationStatus.PENDING)

        reservation.status = ReservationStatus.CANCELLED
        self._release_spot(reservation.spot_id)

        self._increment_version()
        self._add_domain_event(ReservationCancelled(
            aggregate_id=reservation_id, spot_id=reservation.spot_id
        ))
        self._logger.info(f"Reservation cancelled: {reservation_id}")
        return reservation

    def register_entry(self, reservation_id: str) -> Reservation:
        """pending -> active, records the real entry time, spot occupied"""
        reservation = self.require(reservation_id)
        self._require_status(reservation, "registrar la entrada de", ReservationStatus.PENDING)
        self.spots.require(reservation.spot_id)

        reservation.entry_time = self._now()
        reservation.status = ReservationStatus.ACTIVE
        self.spots.set_status(reservation.spot_id, SpotStatus.OCCUPIED)

        self._increment_version()
        self._add_domain_event(EntryRegistered(
            aggregate_id=reservation_id, spot_id=reservation.spot_id
        ))
        self._logger.info(f"Entry registered: {reservation_id} at {reservation.entry_time}")
        return reservation

    def register_exit(self, reservation_id: str) -> int:
        """
        active -> completed; charges ceil(elapsed hours * rate) for the real stay

        Returns: the computed total cost
        Raises: ReservationNotFoundError, InvalidReservationStateError,
                SpotNotFoundError
        """
        reservation = self.require(reservation_id)
        self._require_status(reservation, "registrar la salida de", ReservationStatus.ACTIVE)
        if reservation.entry_time is None:
            raise InvalidReservationStateError(
                reservation_id, reservation.status.value, "registrar la salida de"
            )
        spot = self.spots.require(reservation.spot_id)

        exit_time = self._now()
        cost = calculate_stay_cost(reservation.entry_time, exit_time, spot.hourly_rate)

        reservation.exit_time = exit_time
        reservation.total_cost = cost
        reservation.status = ReservationStatus.COMPLETED
        self._release_spot(reservation.spot_id)

        self._increment_version()
        self._add_domain_event(ExitRegistered(
            aggregate_id=reservation_id, spot_id=reservation.spot_id, total_cost=cost
        ))
        self._logger.info(f"Exit registered: {reservation_id}, total cost {cost}")
        return cost

    def settle_exit(self, reservation_id: str, total_cost: int) -> int:
        """
        Replace the computed cost of a completed stay with the amount charged
        by the backend; a pending ExitRegistered event carries the new amount

        Raises: ReservationNotFoundError, InvalidReservationStateError,
                ValueError for a negative amount
        """
        reservation = self.require(reservation_id)
        self._require_status(reservation, "liquidar", ReservationStatus.COMPLETED)
        if total_cost < 0:
            raise ValueError(f"Total cost cannot be negative: {total_cost}")

        if reservation.total_cost != total_cost:
            self._logger.info(
                f"Exit settled: {reservation_id}, total cost {reservation.total_cost} -> {total_cost}"
            )
        reservation.total_cost = total_cost
        for event in self._changes:
            if isinstance(event, ExitRegistered) and event.aggregate_id == reservation_id:
                event.total_cost = total_cost

        self._increment_version()
        return total_cost

    def complete_reservation(self, reservation_id: str) -> Reservation:
        """Administrative override: pending/active -> completed, no cost computed"""
        reservation = self.require(reservation_id)
        self._require_status(
            reservation, "completar", ReservationStatus.PENDING, ReservationStatus.ACTIVE
        )

        reservation.status = ReservationStatus.COMPLETED
        self._release_spot(reservation.spot_id)

        self._increment_version()
        self._add_domain_event(ReservationCompleted(
            aggregate_id=reservation_id, spot_id=reservation.spot_id
        ))
        self._logger.info(f"Reservation completed by override: {reservation_id}")
        return reservation

    # ------------------------------------------------------------------
    # Spot registry operations guarded by the ledger
    # ------------------------------------------------------------------

    def delete_spot(self, spot_id: str) -> ParkingSpot:
        """
        Remove a spot unless a pending or active reservation references it
        Raises: SpotNotFoundError, SpotHasActiveReservationsError
        """
        self.spots.require(spot_id)
        if self.open_reservations_for_spot(spot_id):
            raise SpotHasActiveReservationsError(spot_id)
        return self.spots.remove_spot(spot_id)

    def generate_ticket(self, reservation_id: str, user_name: str = "Usuario") -> Optional[TicketInfo]:
        """Ticket with the estimated cost, or None if reservation or spot is unknown"""
        reservation = self.get(reservation_id)
        if reservation is None:
            return None

        spot = self.spots.get(reservation.spot_id)
        if spot is None:
            return None

        return TicketInfo(
            reservation_id=reservation.id,
            user_name=user_name,
            license_plate=reservation.license_plate,
            spot_name=spot.name,
            entry_time=reservation.entry_time,
            estimated_entry_time=reservation.estimated_entry_time,
            estimated_exit_time=reservation.estimated_exit_time,
            estimated_cost=calculate_estimated_cost(
                reservation.estimated_entry_time,
                reservation.estimated_exit_time,
                spot.hourly_rate
            )
        )

    # ------------------------------------------------------------------
    # Cache refresh and rollback
    # ------------------------------------------------------------------

    def replace_all(self, spots: List[ParkingSpot], reservations: List[Reservation]) -> None:
        """
        Replace the cached state with an authoritative copy and re-derive
        every spot status from the open reservations
        """
        self.spots._restore({spot.id: spot for spot in spots})
        self._reservations = {r.id: r.copy() for r in reservations}
        self._sync_sequence()
        self._derive_spot_statuses()
        self._increment_version()
        self._logger.info(
            f"Ledger refreshed: {len(self.spots)} spots, {len(self._reservations)} reservations"
        )

    def snapshot(self) -> LedgerSnapshot:
        return (
            self.spots._snapshot(),
            {rid: r.copy() for rid, r in self._reservations.items()},
            self.version,
            self.spots.version
        )

    def restore(self, snapshot: LedgerSnapshot) -> None:
        spots, reservations, version, spots_version = snapshot
        self.spots._restore(spots)
        self.spots._version = spots_version
        self._reservations = {rid: r.copy() for rid, r in reservations.items()}
        self._version = version
        self._sync_sequence()
        self._logger.debug(f"Ledger restored to version {version}")

    @contextmanager
    def transaction(self) -> Iterator['ReservationLedger']:
        """
        Apply mutations tentatively; any exception inside the block restores
        the previous state and discards the events raised in it
        """
        snapshot = self.snapshot()
        own_events = len(self._changes)
        spot_events = len(self.spots._changes)
        try:
            yield self
        except Exception:
            self.restore(snapshot)
            del self._changes[own_events:]
            del self.spots._changes[spot_events:]
            raise

    def collect_events(self) -> List[DomainEvent]:
        """Drain events from both the ledger and the registry"""
        return self.spots.clear_events() + self.clear_events()

    def check_invariants(self) -> List[str]:
        """Return a description of every spot whose status disagrees with its reservations"""
        violations = []
        for spot in self.spots.all():
            open_reservations = self.open_reservations_for_spot(spot.id)
            expected = self._expected_status(open_reservations)
            if len(open_reservations) > 1:
                violations.append(f"{spot.id}: {len(open_reservations)} open reservations")
            elif expected != spot.status:
                violations.append(f"{spot.id}: status {spot.status}, expected {expected}")
        return violations

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _next_id(self) -> str:
        while True:
            candidate = f"r{next(self._sequence)}"
            if candidate not in self._reservations:
                return candidate

    def _sync_sequence(self) -> None:
        highest = 0
        for reservation_id in self._reservations:
            if reservation_id.startswith("r") and reservation_id[1:].isdigit():
                highest = max(highest, int(reservation_id[1:]))
        self._sequence = itertools.count(highest + 1)

    def _require_status(self, reservation: Reservation, action: str, *allowed: ReservationStatus) -> None:
        if reservation.status not in allowed:
            raise InvalidReservationStateError(reservation.id, reservation.status.value, action)

    def _release_spot(self, spot_id: str) -> None:
        # The spot may have been removed by the backend between refreshes
        if spot_id in self.spots:
            self.spots.set_status(spot_id, SpotStatus.AVAILABLE)

    @staticmethod
    def _expected_status(open_reservations: List[Reservation]) -> SpotStatus:
        if any(r.status == ReservationStatus.ACTIVE for r in open_reservations):
            return SpotStatus.OCCUPIED
        if open_reservations:
            return SpotStatus.RESERVED
        return SpotStatus.AVAILABLE

    def _derive_spot_statuses(self) -> None:
        for spot in self.spots.all():
            spot.status = self._expected_status(self.open_reservations_for_spot(spot.id))
