# File: parkreserve/application/data_service.py
"""
Parking Data Application Service

This module implements the application service the UI talks to. It
orchestrates the ReservationLedger, the backend and the notifications.

Responsibilities:
1. Expose the reservation and spot use cases
2. Gate operations by role when an AuthService is attached
3. Keep the ledger cache consistent with the backend (refresh, rollback)
4. Turn every failure into a notification and a failure indicator

Modes:
- Offline: no gateway, the ledger is the source of truth
- Backed: a BackendGateway wraps the REST services; every mutation is
  validated locally, confirmed by the backend and only then kept in the
  cache. A failing backend call rolls the cache back.
"""

from typing import Any, Callable, Dict, List, Optional, Protocol, Tuple, TypeVar
from datetime import datetime
import logging

from ..domain.models import (
    User, UserRole, ParkingSpot, Reservation, Income, ReportFilter, TicketInfo
)
from ..domain.aggregates import ReservationLedger, DEFAULT_MAX_ACTIVE_RESERVATIONS
from ..domain.exceptions import (
    ParkReserveError, ValidationError, BusinessRuleError, NotFoundError,
    ApiError, AuthenticationError, AuthorizationError
)
from ..infrastructure.messaging import EventBus, Notifier
from .dtos import ReservationFormDTO, SpotFormDTO, validate_dto
from .mappers import DataMapper
from .report_service import ReportService

T = TypeVar('T')

STAFF_ROLES = (UserRole.REGISTRADOR, UserRole.ADMIN)


def format_amount(amount: int) -> str:
    """Thousands separated with dots, as shown to users (10.000)"""
    return f"{amount:,}".replace(",", ".")


# ============================================================================
# BACKEND GATEWAY
# ============================================================================

class BackendGateway(Protocol):
    """Operations the data service needs from the backend"""

    def fetch_state(self, user: Optional[User]) -> Tuple[List[ParkingSpot], List[Reservation]]:
        ...

    def create_spot(self, form: SpotFormDTO) -> ParkingSpot:
        ...

    def update_spot(self, spot_id: str, updates: Dict[str, Any]) -> None:
        ...

    def delete_spot(self, spot_id: str) -> None:
        ...

    def create_reservation(self, user_id: str, form: ReservationFormDTO) -> str:
        ...

    def cancel_reservation(self, reservation_id: str) -> None:
        ...

    def complete_reservation(self, reservation_id: str) -> None:
        ...

    def register_entry(self, reservation_id: str) -> None:
        ...

    def register_exit(self, reservation_id: str) -> Optional[int]:
        ...


class RestBackendGateway:
    """BackendGateway over the REST resource services"""

    def __init__(self, api):
        self.api = api
        self._logger = logging.getLogger(self.__class__.__name__)

    def fetch_state(self, user: Optional[User]) -> Tuple[List[ParkingSpot], List[Reservation]]:
        spots = DataMapper.map_estacionamientos(self.api.estacionamientos.list())

        if user is None:
            tickets = []
        elif user.has_role(*STAFF_ROLES):
            tickets = self.api.reservas.all()
        else:
            tickets = self.api.reservas.by_user(int(user.id))

        reservations = DataMapper.map_tickets(tickets)
        self._logger.debug(f"Fetched {len(spots)} spots and {len(reservations)} reservations")
        return spots, reservations

    def create_spot(self, form: SpotFormDTO) -> ParkingSpot:
        created = self.api.estacionamientos.create(DataMapper.spot_to_estacionamiento(form))
        spot = DataMapper.estacionamiento_to_spot(created)
        if spot.owner_id is None:
            spot.owner_id = form.owner_id
        return spot

    def update_spot(self, spot_id: str, updates: Dict[str, Any]) -> None:
        payload = DataMapper.spot_updates_to_estacionamiento(updates)
        if payload:
            self.api.estacionamientos.update(int(spot_id), payload)

    def delete_spot(self, spot_id: str) -> None:
        self.api.estacionamientos.delete(int(spot_id))

    def create_reservation(self, user_id: str, form: ReservationFormDTO) -> str:
        response = self.api.reservas.crear(DataMapper.reservation_form_to_request(form, user_id))
        return str(response.ticket.id)

    def cancel_reservation(self, reservation_id: str) -> None:
        self.api.reservas.cancelar(int(reservation_id))

    def complete_reservation(self, reservation_id: str) -> None:
        self.api.admin_tickets.finalize(int(reservation_id))

    def register_entry(self, reservation_id: str) -> None:
        self.api.admin_tickets.update_status(int(reservation_id), 'activo')

    def register_exit(self, reservation_id: str) -> Optional[int]:
        response = self.api.reservas.finalizar(int(reservation_id))
        total = response.ticket.precio_total
        return int(total) if total is not None else None


# ============================================================================
# PARKING DATA SERVICE
# ============================================================================

class ParkingDataService:
    """
    Main application service for spots and reservations

    Query methods return plain domain objects. Mutations return a success
    indicator: create_reservation -> reservation id or None,
    register_exit -> cost or None, everything else -> True/False.
    """

    def __init__(
        self,
        ledger: Optional[ReservationLedger] = None,
        gateway: Optional[BackendGateway] = None,
        auth=None,
        notifier: Optional[Notifier] = None,
        event_bus: Optional[EventBus] = None,
        report_service: Optional[ReportService] = None,
        config: Optional[Dict[str, Any]] = None
    ):
        self.logger = logging.getLogger(self.__class__.__name__)

        self.config = {
            "max_active_reservations": DEFAULT_MAX_ACTIVE_RESERVATIONS,
            "currency": "COP",
            "default_user_name": "Usuario",
        }
        self.config.update(config or {})

        self.ledger = ledger or ReservationLedger(
            max_active_reservations=self.config["max_active_reservations"]
        )
        self.gateway = gateway
        self.auth = auth
        self.notifier = notifier or Notifier()
        self.event_bus = event_bus or EventBus()
        self.reports = report_service or ReportService(self.ledger)

        mode = "backed" if self.gateway else "offline"
        self.logger.info(f"ParkingDataService initialized ({mode} mode)")

    @property
    def is_backed(self) -> bool:
        return self.gateway is not None

    @property
    def parking_spots(self) -> List[ParkingSpot]:
        return self.ledger.spots.all()

    @property
    def reservations(self) -> List[Reservation]:
        return self.ledger.reservations

    # ========================================================================
    # SPOT MANAGEMENT
    # ========================================================================

    def add_parking_spot(
        self,
        name: str,
        location: str,
        hourly_rate: int,
        type: str = "standard",
        owner_id: Optional[str] = None
    ) -> bool:
        """Add a spot; it always starts available"""

        def operation():
            user = self._require(*STAFF_ROLES)
            form = validate_dto(SpotFormDTO, {
                "name": name,
                "location": location,
                "hourly_rate": hourly_rate,
                "type": type,
                "owner_id": owner_id or (user.id if user else None),
            })

            with self.ledger.transaction():
                if self.is_backed:
                    created = self.gateway.create_spot(form)
                    spot = self.ledger.spots.add_spot(
                        form.name, form.location, form.hourly_rate, form.type,
                        created.owner_id, spot_id=created.id
                    )
                else:
                    spot = self.ledger.spots.add_spot(
                        form.name, form.location, form.hourly_rate, form.type, form.owner_id
                    )
            self._publish_events()

            self.notifier.notify("Plaza agregada", f"La plaza {spot.name} ha sido agregada exitosamente")
            return True

        return self._run("add parking spot", operation, False)

    def update_parking_spot(self, spot_id: str, **updates: Any) -> bool:
        """Partial update; status cannot be edited here"""

        def operation():
            self._require(*STAFF_ROLES)
            if "status" in updates:
                raise ValidationError(
                    "El estado de la plaza no se puede editar",
                    {"status": ["El estado de la plaza no se puede editar"]}
                )
            if "hourly_rate" in updates and updates["hourly_rate"] is not None and updates["hourly_rate"] <= 0:
                raise ValidationError(
                    "La tarifa debe ser mayor a cero",
                    {"hourly_rate": ["La tarifa debe ser mayor a cero"]}
                )

            with self.ledger.transaction():
                self.ledger.spots.update_spot(spot_id, **updates)
                if self.is_backed:
                    self.gateway.update_spot(spot_id, updates)
            self._publish_events()

            self.notifier.notify("Plaza actualizada", "La plaza ha sido actualizada exitosamente")
            return True

        return self._run("update parking spot", operation, False)

    def delete_parking_spot(self, spot_id: str) -> bool:
        """Rejected while a pending or active reservation references the spot"""

        def operation():
            self._require(*STAFF_ROLES)
            with self.ledger.transaction():
                self.ledger.delete_spot(spot_id)
                if self.is_backed:
                    self.gateway.delete_spot(spot_id)
            self._publish_events()

            self.notifier.notify("Plaza eliminada", "La plaza ha sido eliminada exitosamente")
            return True

        return self._run("delete parking spot", operation, False)

    # ========================================================================
    # RESERVATION LIFECYCLE
    # ========================================================================

    def create_reservation(
        self,
        user_id: str,
        spot_id: str,
        license_plate: str,
        estimated_entry_time: datetime,
        estimated_exit_time: datetime
    ) -> Optional[str]:
        """
        Create a pending reservation

        Returns: the new reservation id, or None when a rule, the form or
        the backend rejects it (nothing is mutated in that case)
        """

        def operation():
            self._require()
            form = validate_dto(ReservationFormDTO, {
                "spot_id": spot_id,
                "license_plate": license_plate,
                "estimated_entry_time": estimated_entry_time,
                "estimated_exit_time": estimated_exit_time,
            })
            self.ledger.can_create_reservation(user_id, form.spot_id)

            with self.ledger.transaction():
                backend_id = self.gateway.create_reservation(user_id, form) if self.is_backed else None
                reservation = self.ledger.create_reservation(
                    user_id=user_id,
                    spot_id=form.spot_id,
                    license_plate=form.license_plate,
                    estimated_entry_time=form.estimated_entry_time,
                    estimated_exit_time=form.estimated_exit_time,
                    reservation_id=backend_id
                )
            self._publish_events()

            self.notifier.notify("Reservación creada", "Tu reservación ha sido creada exitosamente")
            return reservation.id

        return self._run("create reservation", operation, None)

    def cancel_reservation(self, reservation_id: str) -> bool:
        def operation():
            self._require()
            with self.ledger.transaction():
                self.ledger.cancel_reservation(reservation_id)
                if self.is_backed:
                    self.gateway.cancel_reservation(reservation_id)
            self._publish_events()

            self.notifier.notify("Reservación cancelada", "La reservación ha sido cancelada exitosamente")
            return True

        return self._run("cancel reservation", operation, False)

    def complete_reservation(self, reservation_id: str) -> bool:
        """Administrative override, no cost is computed"""

        def operation():
            self._require(UserRole.ADMIN)
            with self.ledger.transaction():
                self.ledger.complete_reservation(reservation_id)
                if self.is_backed:
                    self.gateway.complete_reservation(reservation_id)
            self._publish_events()

            self.notifier.notify("Reservación completada", "La reservación ha sido marcada como completada")
            return True

        return self._run("complete reservation", operation, False)

    def register_entry(self, reservation_id: str) -> bool:
        def operation():
            self._require(*STAFF_ROLES)
            with self.ledger.transaction():
                self.ledger.register_entry(reservation_id)
                if self.is_backed:
                    self.gateway.register_entry(reservation_id)
            self._publish_events()

            self.notifier.notify("Entrada registrada", "Se ha registrado la entrada correctamente")
            return True

        return self._run("register entry", operation, False)

    def register_exit(self, reservation_id: str) -> Optional[int]:
        """
        Close an active reservation

        Returns: the amount to pay, or None on failure. In backed mode the
        amount charged by the backend wins over the local computation.
        """

        def operation():
            self._require(*STAFF_ROLES)
            with self.ledger.transaction():
                cost = self.ledger.register_exit(reservation_id)
                if self.is_backed:
                    backend_total = self.gateway.register_exit(reservation_id)
                    if backend_total is not None:
                        if backend_total != cost:
                            self.logger.warning(
                                f"Backend total {backend_total} differs from computed cost {cost} "
                                f"for reservation {reservation_id}"
                            )
                        cost = self.ledger.settle_exit(reservation_id, backend_total)
            self._publish_events()

            self.notifier.notify(
                "Salida registrada",
                f"Monto a pagar: {format_amount(cost)} {self.config['currency']}"
            )
            return cost

        return self._run("register exit", operation, None)

    # ========================================================================
    # QUERIES
    # ========================================================================

    def get_user_reservations(self, user_id: str) -> List[Reservation]:
        return self.ledger.get_user_reservations(user_id)

    def get_spots_by_owner(self, owner_id: str) -> List[ParkingSpot]:
        return self.ledger.get_spots_by_owner(owner_id)

    def get_available_spots(self) -> List[ParkingSpot]:
        return self.ledger.spots.available()

    def get_user_active_reservation_count(self, user_id: str) -> int:
        return self.ledger.get_user_active_reservation_count(user_id)

    def get_income_report(self, report_filter: ReportFilter, owner_id: str) -> List[Income]:
        return self.reports.get_income_report(report_filter, owner_id)

    def estimate_cost(self, spot_id: str, entry: datetime, exit: datetime) -> Optional[int]:
        """Estimate shown on the reservation form; None for an unknown spot"""
        spot = self.ledger.spots.get(spot_id)
        if spot is None or exit <= entry:
            return None
        return self.ledger.estimate_cost(spot_id, entry, exit)

    def generate_ticket(self, reservation_id: str) -> Optional[TicketInfo]:
        reservation = self.ledger.get(reservation_id)
        if reservation is None:
            return None
        return self.ledger.generate_ticket(reservation_id, self._user_name_for(reservation.user_id))

    def refresh_data(self) -> bool:
        """Reload the cache from the backend; offline mode has nothing to refresh"""
        if not self.is_backed:
            return True

        def operation():
            user = self.auth.current_user if self.auth else None
            spots, reservations = self.gateway.fetch_state(user)
            self.ledger.replace_all(spots, reservations)
            return True

        return self._run("refresh data", operation, False, notify_success=False)

    # ========================================================================
    # HELPERS
    # ========================================================================

    def _require(self, *roles: UserRole) -> Optional[User]:
        """Role gate; a no-op when no AuthService is attached"""
        if self.auth is None:
            return None
        return self.auth.require_role(*roles)

    def _user_name_for(self, user_id: str) -> str:
        current = self.auth.current_user if self.auth else None
        if current is not None and current.id == user_id:
            return current.name
        return self.config["default_user_name"]

    def _publish_events(self) -> None:
        self.event_bus.publish_all(self.ledger.collect_events())

    def _run(self, action: str, operation: Callable[[], T], failure: T, notify_success: bool = True) -> T:
        """Operation boundary: every error becomes a notification and the failure value"""
        try:
            return operation()

        except ValidationError as e:
            self.logger.info(f"Validation failed in {action}: {e.field_errors or e.message}")
            self.notifier.error("Datos inválidos", e.message)
        except BusinessRuleError as e:
            self.logger.info(f"Business rule rejected {action}: {e.message}")
            self.notifier.error(e.title, e.message)
        except NotFoundError as e:
            self.logger.info(f"Not found in {action}: {e.message}")
            self.notifier.error(e.title, e.message)
        except AuthorizationError as e:
            self.logger.warning(f"Authorization failed in {action}: {e.message}")
            self.notifier.error("Acceso denegado", e.message)
        except AuthenticationError as e:
            self.logger.warning(f"Authentication required for {action}: {e.message}")
            if self.auth is not None:
                self.auth.handle_auth_error()
            else:
                self.notifier.error("Sesión expirada", e.message)
        except ApiError as e:
            self.logger.error(f"Backend error in {action}: {e.message} (status {e.status})")
            self.notifier.error("Error", e.message)
        except ParkReserveError as e:
            self.logger.error(f"Error in {action}: {e.message}", exc_info=True)
            self.notifier.error("Error", e.message)
        except ValueError as e:
            self.logger.info(f"Invalid data in {action}: {e}")
            self.notifier.error("Datos inválidos", str(e))
        except Exception as e:
            self.logger.error(f"Unexpected error in {action}: {e}", exc_info=True)
            self.notifier.error("Error", "Ha ocurrido un error. Por favor intente nuevamente.")

        return failure
