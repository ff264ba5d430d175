# File: tests/unit/test_models.py
"""
Domain Layer Unit Tests

Tests for domain entities, value objects and domain events.
"""

import unittest
import sys
from datetime import date, datetime, timedelta
from pathlib import Path

sys.path.append(str(Path(__file__).parent.parent.parent))

from parkreserve.domain.models import (
    User, UserRole, ParkingSpot, SpotStatus, Reservation, ReservationStatus,
    TimeRange, ReportFilter, Income, ReservationCreated, count_open_reservations
)


class TestUser(unittest.TestCase):

    def test_round_trip_through_dict(self):
        user = User(id="7", name="Ana", email="ana@example.com", role=UserRole.REGISTRADOR)
        restored = User.from_dict(user.to_dict())
        self.assertEqual(restored, user)
        self.assertEqual(restored.role, UserRole.REGISTRADOR)

    def test_role_accepts_string(self):
        user = User(id="1", name="Luis", email="luis@example.com", role="admin")
        self.assertTrue(user.has_role(UserRole.ADMIN, UserRole.REGISTRADOR))
        self.assertFalse(user.has_role(UserRole.RESERVADOR))

    def test_invalid_email(self):
        with self.assertRaises(ValueError):
            User(id="1", name="X", email="not-an-email", role=UserRole.RESERVADOR)

    def test_unknown_role(self):
        with self.assertRaises(ValueError):
            User(id="1", name="X", email="x@example.com", role="guest")


class TestParkingSpot(unittest.TestCase):

    def test_defaults(self):
        spot = ParkingSpot(name="A1", location="Nivel 1", hourly_rate=5000, id="p1")
        self.assertEqual(spot.status, SpotStatus.AVAILABLE)
        self.assertTrue(spot.is_available)
        self.assertEqual(spot.type, "standard")

    def test_negative_rate_rejected(self):
        with self.assertRaises(ValueError):
            ParkingSpot(name="A1", location="Nivel 1", hourly_rate=-1)

    def test_empty_name_rejected(self):
        with self.assertRaises(ValueError):
            ParkingSpot(name="  ", location="Nivel 1", hourly_rate=1000)

    def test_copy_is_independent(self):
        spot = ParkingSpot(name="A1", location="Nivel 1", hourly_rate=5000, id="p1")
        clone = spot.copy()
        clone.status = SpotStatus.OCCUPIED
        self.assertEqual(spot.status, SpotStatus.AVAILABLE)
        self.assertEqual(clone.id, "p1")

    def test_to_dict(self):
        spot = ParkingSpot(name="A1", location="Nivel 1", hourly_rate=5000, owner_id="u1", id="p1")
        self.assertEqual(spot.to_dict()["status"], "available")
        self.assertEqual(spot.to_dict()["owner_id"], "u1")


class TestReservation(unittest.TestCase):

    def setUp(self):
        self.entry = datetime(2024, 3, 1, 10, 0)

    def test_plate_normalized(self):
        reservation = Reservation("u1", "p1", " abc123 ", self.entry, self.entry + timedelta(hours=1))
        self.assertEqual(reservation.license_plate, "ABC123")
        self.assertEqual(reservation.status, ReservationStatus.PENDING)
        self.assertIsNone(reservation.total_cost)

    def test_exit_must_follow_entry(self):
        with self.assertRaises(ValueError):
            Reservation("u1", "p1", "ABC123", self.entry, self.entry)

    def test_empty_plate_rejected(self):
        with self.assertRaises(ValueError):
            Reservation("u1", "p1", "   ", self.entry, self.entry + timedelta(hours=1))

    def test_open_states(self):
        self.assertTrue(ReservationStatus.PENDING.holds_spot)
        self.assertTrue(ReservationStatus.ACTIVE.holds_spot)
        self.assertTrue(ReservationStatus.COMPLETED.is_terminal)
        self.assertTrue(ReservationStatus.CANCELLED.is_terminal)

    def test_count_open_reservations(self):
        exit = self.entry + timedelta(hours=1)
        reservations = [
            Reservation("u1", "p1", "AAA111", self.entry, exit, ReservationStatus.PENDING),
            Reservation("u1", "p2", "AAA111", self.entry, exit, ReservationStatus.ACTIVE),
            Reservation("u1", "p3", "AAA111", self.entry, exit, ReservationStatus.COMPLETED),
            Reservation("u2", "p4", "BBB222", self.entry, exit, ReservationStatus.PENDING),
        ]
        self.assertEqual(count_open_reservations(reservations, "u1"), 2)


class TestValueObjects(unittest.TestCase):

    def test_time_range_duration(self):
        start = datetime(2024, 3, 1, 10, 0)
        time_range = TimeRange(start, start + timedelta(minutes=90))
        self.assertAlmostEqual(time_range.duration_hours, 1.5)
        self.assertTrue(time_range.contains(start + timedelta(minutes=30)))

    def test_report_filter(self):
        report_filter = ReportFilter(date(2024, 3, 1), date(2024, 3, 31), ["p1"])
        self.assertEqual(report_filter.spot_ids, ("p1",))
        self.assertTrue(report_filter.includes_day(date(2024, 3, 31)))
        self.assertFalse(report_filter.includes_day(date(2024, 4, 1)))
        self.assertTrue(report_filter.includes_spot("p1"))
        self.assertFalse(report_filter.includes_spot("p2"))

    def test_report_filter_without_spots_includes_all(self):
        self.assertTrue(ReportFilter(date(2024, 3, 1), date(2024, 3, 1)).includes_spot("p9"))

    def test_report_filter_rejects_inverted_window(self):
        with self.assertRaises(ValueError):
            ReportFilter(date(2024, 3, 2), date(2024, 3, 1))

    def test_income_to_dict(self):
        income = Income(date(2024, 3, 1), 15000, 2)
        self.assertEqual(
            income.to_dict(),
            {"date": "2024-03-01", "amount": 15000, "reservationCount": 2}
        )

    def test_domain_event_name(self):
        event = ReservationCreated(aggregate_id="r1", spot_id="p1", user_id="u1")
        self.assertEqual(event.name, "ReservationCreated")
        self.assertEqual(event.to_dict()["event"], "ReservationCreated")


if __name__ == '__main__':
    unittest.main()
