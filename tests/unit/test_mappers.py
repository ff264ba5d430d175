# File: tests/unit/test_mappers.py
"""
Unit tests for DTO validation and the backend <-> domain mappers
"""

import unittest
import sys
from datetime import date, datetime, timedelta
from pathlib import Path

sys.path.append(str(Path(__file__).parent.parent.parent))

from parkreserve.application.dtos import (
    TicketDTO, EstacionamientoDTO, UsuarioReservaDTO, IncomeDTO,
    ReservationFormDTO, SpotFormDTO, RegisterRequestDTO, ValidationErrorDTO,
    validate_dto
)
from parkreserve.application.mappers import DataMapper
from parkreserve.domain.models import UserRole, SpotStatus, ReservationStatus
from parkreserve.domain.exceptions import ValidationError


ENTRY = datetime(2024, 3, 1, 10, 0)


def ticket(**overrides):
    data = {
        "id": 31,
        "usuario_id": 4,
        "vehiculo_id": "abc123",
        "estacionamiento_id": 12,
        "fecha_entrada": ENTRY.isoformat(),
        "estado": "activo",
    }
    data.update(overrides)
    return TicketDTO.from_dict(data)


class TestTicketMapping(unittest.TestCase):

    def test_active_ticket(self):
        reservation = DataMapper.ticket_to_reservation(ticket())
        self.assertEqual(reservation.id, "31")
        self.assertEqual(reservation.spot_id, "12")
        self.assertEqual(reservation.status, ReservationStatus.ACTIVE)
        self.assertEqual(reservation.entry_time, ENTRY)
        self.assertIsNone(reservation.total_cost)

    def test_default_estimated_exit(self):
        reservation = DataMapper.ticket_to_reservation(ticket())
        self.assertEqual(reservation.estimated_exit_time, ENTRY + timedelta(hours=2))

    def test_estimated_hours(self):
        reservation = DataMapper.ticket_to_reservation(ticket(horas_estimadas=3))
        self.assertEqual(reservation.estimated_exit_time, ENTRY + timedelta(hours=3))

    def test_explicit_estimated_exit_wins(self):
        estimated = ENTRY + timedelta(hours=5)
        reservation = DataMapper.ticket_to_reservation(
            ticket(fecha_salida_estimada=estimated.isoformat(), horas_estimadas=1)
        )
        self.assertEqual(reservation.estimated_exit_time, estimated)

    def test_pending_ticket_has_no_entry(self):
        reservation = DataMapper.ticket_to_reservation(ticket(estado="pendiente"))
        self.assertEqual(reservation.status, ReservationStatus.PENDING)
        self.assertIsNone(reservation.entry_time)

    def test_finished_ticket(self):
        exit = ENTRY + timedelta(minutes=90)
        reservation = DataMapper.ticket_to_reservation(
            ticket(estado="finalizado", fecha_salida=exit.isoformat(), precio_total="7500.20")
        )
        self.assertEqual(reservation.status, ReservationStatus.COMPLETED)
        self.assertEqual(reservation.exit_time, exit)
        self.assertEqual(reservation.total_cost, 7501)

    def test_paid_ticket_is_completed(self):
        reservation = DataMapper.ticket_to_reservation(ticket(estado="pagado", precio_total=5000))
        self.assertEqual(reservation.status, ReservationStatus.COMPLETED)

    def test_cancelled_ticket_has_no_cost(self):
        reservation = DataMapper.ticket_to_reservation(ticket(estado="cancelado", precio_total=5000))
        self.assertEqual(reservation.status, ReservationStatus.CANCELLED)
        self.assertIsNone(reservation.total_cost)
        self.assertIsNone(reservation.entry_time)


class TestOtherMappings(unittest.TestCase):

    def test_usuario_role_from_record(self):
        usuario = UsuarioReservaDTO(id=1, nombre="Admin", email="reservador@example.com", role="admin")
        self.assertEqual(DataMapper.usuario_to_user(usuario).role, UserRole.ADMIN)

    def test_estacionamiento_to_spot(self):
        dto = EstacionamientoDTO(id=3, nombre="Norte", direccion="Cra 7", precio_por_hora=2500.4, estado="inactivo")
        spot = DataMapper.estacionamiento_to_spot(dto)
        self.assertEqual(spot.id, "3")
        self.assertEqual(spot.hourly_rate, 2501)
        self.assertEqual(spot.status, SpotStatus.OCCUPIED)
        self.assertIsNone(spot.owner_id)

    def test_spot_form_payload(self):
        form = SpotFormDTO(name="Norte", location="Cra 7", hourly_rate=3000, owner_id="9")
        payload = DataMapper.spot_to_estacionamiento(form)
        self.assertEqual(payload["precio_mensual"], 480000)
        self.assertEqual(payload["usuario_id"], 9)
        self.assertEqual(payload["espacios_disponibles"], 20)

    def test_partial_update_payload(self):
        payload = DataMapper.spot_updates_to_estacionamiento({"hourly_rate": 4000, "type": "compact"})
        self.assertEqual(payload, {"precio_por_hora": 4000})

    def test_income(self):
        dto = IncomeDTO.from_dict({"date": "2024-03-01", "amount": 1500.5, "reservationCount": 1})
        income = DataMapper.income_dto_to_income(dto)
        self.assertEqual(income.date, date(2024, 3, 1))
        self.assertEqual(income.amount, 1501)
        self.assertEqual(dto.to_dict(by_alias=True)["reservationCount"], 1)


class TestFormValidation(unittest.TestCase):

    def test_reservation_form_normalizes_plate(self):
        form = validate_dto(ReservationFormDTO, {
            "spot_id": "p1",
            "license_plate": " xyz-987 ",
            "estimated_entry_time": ENTRY,
            "estimated_exit_time": ENTRY + timedelta(hours=1),
        })
        self.assertEqual(form.license_plate, "XYZ-987")

    def test_reservation_form_field_errors(self):
        with self.assertRaises(ValidationError) as ctx:
            validate_dto(ReservationFormDTO, {
                "spot_id": "p1",
                "license_plate": "",
                "estimated_entry_time": ENTRY,
                "estimated_exit_time": ENTRY + timedelta(hours=1),
            })
        self.assertIn("license_plate", ctx.exception.field_errors)
        self.assertEqual(ctx.exception.message, "La placa es obligatoria")

    def test_spot_form_rejects_blank_name(self):
        with self.assertRaises(ValidationError) as ctx:
            validate_dto(SpotFormDTO, {"name": "  ", "location": "Cra 7", "hourly_rate": 1000})
        self.assertIn("name", ctx.exception.field_errors)

    def test_register_password_mismatch(self):
        with self.assertRaises(ValidationError) as ctx:
            validate_dto(RegisterRequestDTO, {
                "nombre": "Ana",
                "email": "ana@example.com",
                "documento": "1",
                "password": "secret1",
                "password_confirmation": "secret2",
            })
        self.assertEqual(ctx.exception.message, "Las contraseñas no coinciden")

    def test_validation_error_dto(self):
        error = ValidationError("La placa es obligatoria", {"license_plate": ["La placa es obligatoria"]})
        dto = ValidationErrorDTO.from_exception(error)
        self.assertFalse(dto.success)
        self.assertEqual(dto.errors["license_plate"], ["La placa es obligatoria"])


if __name__ == '__main__':
    unittest.main()
