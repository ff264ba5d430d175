# File: parkreserve/application/report_service.py
"""
Report Service

Income and reservation reports for spot owners. When a ReportesApi is
attached the backend answers first; any backend failure falls back to
aggregating the ledger cache. Reports are recomputed on every query and
never stored.
"""

from collections import defaultdict
from datetime import date, timedelta
from typing import Callable, Dict, List, Optional
import logging

from ..domain.models import Income, Reservation, ReservationStatus, ReportFilter
from ..domain.aggregates import ReservationLedger
from ..domain.exceptions import ApiError
from .dtos import ReservationStatsDTO, ReservationByStatusDTO
from .mappers import DataMapper

PERIOD_DAYS = {
    'day': 1,
    'week': 7,
    'month': 30,
    'year': 365,
}


class ReportService:
    """Owner reports over the backend with a local fallback"""

    def __init__(
        self,
        ledger: ReservationLedger,
        reportes_api=None,
        today: Callable[[], date] = date.today
    ):
        self.ledger = ledger
        self.reportes_api = reportes_api
        self._today = today
        self._logger = logging.getLogger(self.__class__.__name__)

    def get_income_report(self, report_filter: ReportFilter, owner_id: str) -> List[Income]:
        """
        Daily income for the owner's spots inside the filter window

        The backend cannot filter by spot, so a filter with spot_ids is
        always answered from the cache.
        """
        if self._backend_usable(owner_id) and not report_filter.spot_ids:
            try:
                items = self.reportes_api.ingresos(
                    int(owner_id), report_filter.start_date, report_filter.end_date, group_by='day'
                )
                return sorted((DataMapper.income_dto_to_income(i) for i in items), key=lambda i: i.date)
            except ApiError as e:
                self._logger.warning(f"Income report unavailable from backend, using cache: {e.message}")

        return self.compute_income(report_filter, owner_id)

    def compute_income(self, report_filter: ReportFilter, owner_id: str) -> List[Income]:
        """Completed reservations grouped by the day of their exit"""
        amounts: Dict[date, int] = defaultdict(int)
        counts: Dict[date, int] = defaultdict(int)

        for reservation in self._owner_reservations(owner_id):
            if reservation.status != ReservationStatus.COMPLETED or reservation.exit_time is None:
                continue
            if not report_filter.includes_spot(reservation.spot_id):
                continue

            day = reservation.exit_time.date()
            if not report_filter.includes_day(day):
                continue

            amounts[day] += reservation.total_cost or 0
            counts[day] += 1

        return [
            Income(date=day, amount=amounts[day], reservation_count=counts[day])
            for day in sorted(amounts)
        ]

    def get_reservation_stats(self, owner_id: str, period: str = 'week') -> ReservationStatsDTO:
        if period not in PERIOD_DAYS:
            raise ValueError(f"Unknown report period: {period}")

        if self._backend_usable(owner_id):
            try:
                stats = self.reportes_api.estadisticas(int(owner_id), period)
                if stats is not None:
                    return stats
            except ApiError as e:
                self._logger.warning(f"Reservation stats unavailable from backend, using cache: {e.message}")

        today = self._today()
        since = today - timedelta(days=PERIOD_DAYS[period] - 1)
        reservations = [
            r for r in self._owner_reservations(owner_id)
            if since <= r.estimated_entry_time.date() <= today
        ]
        completed = [r for r in reservations if r.status == ReservationStatus.COMPLETED]
        total_income = sum(r.total_cost or 0 for r in completed)

        return ReservationStatsDTO(
            total_reservations=len(reservations),
            completed_reservations=len(completed),
            active_reservations=sum(1 for r in reservations if r.status == ReservationStatus.ACTIVE),
            total_income=total_income,
            average_income=total_income / len(completed) if completed else 0,
            period=period
        )

    def get_reservations_by_status(
        self,
        owner_id: str,
        start_date: date,
        end_date: date
    ) -> List[ReservationByStatusDTO]:
        if self._backend_usable(owner_id):
            try:
                return self.reportes_api.reservas_por_estado(int(owner_id), start_date, end_date)
            except ApiError as e:
                self._logger.warning(f"Status report unavailable from backend, using cache: {e.message}")

        counts: Dict[ReservationStatus, int] = defaultdict(int)
        totals: Dict[ReservationStatus, int] = defaultdict(int)
        for reservation in self._owner_reservations(owner_id):
            if start_date <= reservation.estimated_entry_time.date() <= end_date:
                counts[reservation.status] += 1
                totals[reservation.status] += reservation.total_cost or 0

        return [
            ReservationByStatusDTO(status=status.value, count=counts[status], total_amount=totals[status])
            for status in ReservationStatus
            if counts[status]
        ]

    def _owner_reservations(self, owner_id: str) -> List[Reservation]:
        owned = {spot.id for spot in self.ledger.get_spots_by_owner(owner_id)}
        return [r for r in self.ledger.reservations if r.spot_id in owned]

    def _backend_usable(self, owner_id: Optional[str]) -> bool:
        # Backend ids are numeric; offline ids (u1, p1...) never reach it
        return self.reportes_api is not None and bool(owner_id) and str(owner_id).isdigit()
