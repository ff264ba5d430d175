# File: tests/unit/test_api_client.py
"""
Unit tests for the HTTP client, the resource services and the REST
backend gateway. requests is never hit: the Session is a Mock.
"""

import json
import unittest
import sys
from datetime import date, datetime
from pathlib import Path
from unittest.mock import Mock

import requests

sys.path.append(str(Path(__file__).parent.parent.parent))

from parkreserve.infrastructure.api_client import ApiClient
from parkreserve.infrastructure.api_services import BackendApi
from parkreserve.infrastructure.storage import InMemoryStorage, TOKEN_KEY, USER_KEY
from parkreserve.application.data_service import RestBackendGateway
from parkreserve.application.dtos import LoginRequestDTO, ReservationFormDTO
from parkreserve.domain.models import User, UserRole, SpotStatus, ReservationStatus
from parkreserve.domain.exceptions import ApiError, AuthenticationError


def make_response(status=200, body=None, reason="OK"):
    response = Mock()
    response.status_code = status
    response.reason = reason
    response.content = json.dumps(body).encode() if body is not None else b""
    response.json.return_value = body
    return response


def envelope(data=None, success=True, message=None):
    return {"success": success, "data": data, "message": message, "errors": {}}


TICKET = {
    "id": 31,
    "usuario_id": 4,
    "vehiculo_id": "abc123",
    "estacionamiento_id": 12,
    "fecha_entrada": "2024-03-01T10:00:00",
    "fecha_salida_estimada": "2024-03-01T12:00:00",
    "estado": "pendiente",
}

ESTACIONAMIENTO = {
    "id": 12,
    "nombre": "Centro",
    "direccion": "Calle 10",
    "precio_por_hora": 5000,
    "estado": "activo",
    "usuario_id": 9,
}


class ApiTestCase(unittest.TestCase):

    def setUp(self):
        self.session = Mock()
        self.storage = InMemoryStorage()
        self.on_auth_error = Mock()
        self.client = ApiClient(
            base_url="http://api.test/api/",
            storage=self.storage,
            session=self.session,
            on_auth_error=self.on_auth_error
        )

    def respond(self, *responses):
        self.session.request.side_effect = list(responses)

    def last_call(self):
        return self.session.request.call_args


class TestApiClient(ApiTestCase):

    def test_get_without_token(self):
        self.respond(make_response(body={"ok": True}))
        self.assertEqual(self.client.get("/ping", params={"a": 1}), {"ok": True})

        args, kwargs = self.last_call()
        self.assertEqual(args, ("GET", "http://api.test/api/ping"))
        self.assertEqual(kwargs["params"], {"a": 1})
        self.assertEqual(kwargs["headers"], {})
        self.assertEqual(kwargs["timeout"], 10)

    def test_bearer_token_from_storage(self):
        self.client.set_auth_token("tok")
        self.respond(make_response(body={}))
        self.client.post("/things", {"x": 1})

        _, kwargs = self.last_call()
        self.assertEqual(kwargs["headers"], {"Authorization": "Bearer tok"})
        self.assertEqual(kwargs["json"], {"x": 1})

    def test_empty_body(self):
        self.respond(make_response(status=204))
        self.assertIsNone(self.client.delete("/things/1"))

    def test_http_error_uses_body_message(self):
        self.respond(make_response(status=404, body={"message": "No existe"}, reason="Not Found"))
        with self.assertRaises(ApiError) as ctx:
            self.client.get("/things/9")
        self.assertEqual(ctx.exception.message, "No existe")
        self.assertEqual(ctx.exception.status, 404)

    def test_http_error_falls_back_to_reason(self):
        self.respond(make_response(status=500, body=None, reason="Internal Server Error"))
        with self.assertRaises(ApiError) as ctx:
            self.client.get("/boom")
        self.assertEqual(ctx.exception.message, "Internal Server Error")

    def test_validation_errors_joined(self):
        body = {"message": "Invalid", "errors": {"email": ["Requerido"], "password": ["Muy corta"]}}
        self.respond(make_response(status=422, body=body))
        with self.assertRaises(ApiError) as ctx:
            self.client.post("/register", {})
        self.assertEqual(ctx.exception.message, "Requerido, Muy corta")
        self.assertEqual(ctx.exception.errors["email"], ["Requerido"])

    def test_unauthorized_clears_session(self):
        self.storage.set_item(TOKEN_KEY, "old")
        self.storage.set_item(USER_KEY, "{}")
        self.respond(make_response(status=401, body={"message": "Unauthenticated."}))

        with self.assertRaises(AuthenticationError):
            self.client.get("/me")

        self.assertIsNone(self.storage.get_item(TOKEN_KEY))
        self.assertIsNone(self.storage.get_item(USER_KEY))
        self.on_auth_error.assert_called_once_with()

    def test_network_error(self):
        self.session.request.side_effect = requests.ConnectionError()
        with self.assertRaises(ApiError) as ctx:
            self.client.get("/ping")
        self.assertEqual(ctx.exception.status, 0)
        self.assertEqual(ctx.exception.message, "Error de conexión")

    def test_unwrap(self):
        self.assertEqual(ApiClient.unwrap(envelope([1, 2])), [1, 2])
        with self.assertRaises(ApiError) as ctx:
            ApiClient.unwrap(envelope(success=False, message="Plaza ocupada"))
        self.assertEqual(ctx.exception.message, "Plaza ocupada")
        with self.assertRaises(ApiError):
            ApiClient.unwrap(None, "Sin respuesta")


class TestResourceServices(ApiTestCase):

    def setUp(self):
        super().setUp()
        self.api = BackendApi(self.client)

    def test_login_stores_token(self):
        user = {"id": 4, "nombre": "Raul", "email": "raul@example.com", "role": "reservador"}
        self.respond(make_response(body=envelope({"user": user, "access_token": "tok-4"})))

        login = self.api.auth.login(LoginRequestDTO(email="raul@example.com", password="secret"))

        self.assertEqual(login.user.role, "reservador")
        self.assertEqual(self.storage.get_item(TOKEN_KEY), "tok-4")

    def test_list_estacionamientos(self):
        self.respond(make_response(body=envelope([ESTACIONAMIENTO])))
        items = self.api.estacionamientos.list()
        self.assertEqual(items[0].nombre, "Centro")
        self.assertEqual(self.last_call()[0], ("GET", "http://api.test/api/estacionamientos"))

    def test_cancel_sends_reason(self):
        self.respond(make_response(body=envelope(None)))
        self.api.reservas.cancelar(31)
        args, kwargs = self.last_call()
        self.assertEqual(args[1], "http://api.test/api/business/reservas/31/cancelar")
        self.assertEqual(kwargs["json"], {"motivo": "Cancelación solicitada por el usuario"})

    def test_ticket_by_code_missing(self):
        self.respond(make_response(body=envelope(None, success=False)))
        self.assertIsNone(self.api.admin_tickets.by_code("T-1"))

    def test_income_report_params(self):
        self.respond(make_response(body=envelope([{"date": "2024-03-01", "amount": 15000, "reservationCount": 2}])))
        items = self.api.reportes.ingresos(9, date(2024, 3, 1), date(2024, 3, 31))
        self.assertEqual(items[0].reservation_count, 2)
        self.assertEqual(
            self.last_call()[1]["params"],
            {"user_id": 9, "start_date": "2024-03-01", "end_date": "2024-03-31", "group_by": "day"}
        )

    def test_failed_envelope_raises(self):
        self.respond(make_response(body=envelope(success=False, message="No se pudo crear la reserva")))
        with self.assertRaises(ApiError):
            self.api.estacionamientos.list()


class TestRestBackendGateway(ApiTestCase):

    def setUp(self):
        super().setUp()
        self.gateway = RestBackendGateway(BackendApi(self.client))

    def test_fetch_state_for_reservador(self):
        self.respond(
            make_response(body=envelope([ESTACIONAMIENTO])),
            make_response(body=envelope([TICKET])),
        )
        user = User(id="4", name="Raul", email="raul@example.com", role=UserRole.RESERVADOR)

        spots, reservations = self.gateway.fetch_state(user)

        self.assertEqual(spots[0].id, "12")
        self.assertEqual(spots[0].owner_id, "9")
        self.assertEqual(spots[0].status, SpotStatus.AVAILABLE)
        self.assertEqual(reservations[0].status, ReservationStatus.PENDING)
        self.assertEqual(self.last_call()[0][1], "http://api.test/api/tickets/user/4")

    def test_fetch_state_for_staff_reads_all_tickets(self):
        self.respond(
            make_response(body=envelope([])),
            make_response(body=envelope([])),
        )
        user = User(id="1", name="Admin", email="admin@example.com", role=UserRole.ADMIN)
        self.gateway.fetch_state(user)
        self.assertEqual(self.last_call()[0][1], "http://api.test/api/tickets")

    def test_create_reservation_returns_ticket_id(self):
        self.respond(make_response(body=envelope({"ticket": TICKET, "precio_estimado": 10000})))
        form = ReservationFormDTO(
            spot_id="12",
            license_plate="abc123",
            estimated_entry_time=datetime(2024, 3, 1, 10, 0),
            estimated_exit_time=datetime(2024, 3, 1, 11, 30),
        )

        self.assertEqual(self.gateway.create_reservation("4", form), "31")

        body = self.last_call()[1]["json"]
        self.assertEqual(body["estacionamiento_id"], 12)
        self.assertEqual(body["vehiculo_id"], "ABC123")
        self.assertEqual(body["horas_estimadas"], 2)

    def test_register_exit_returns_backend_total(self):
        finished = dict(TICKET, estado="finalizado", precio_total="10000.00", fecha_salida="2024-03-01T12:00:00")
        self.respond(make_response(body=envelope({"ticket": finished, "total_pagado": 10000})))
        self.assertEqual(self.gateway.register_exit("31"), 10000)

    def test_register_entry_marks_ticket_active(self):
        self.respond(make_response(body=envelope(None)))
        self.gateway.register_entry("31")
        args, kwargs = self.last_call()
        self.assertEqual(args, ("PUT", "http://api.test/api/tickets/31"))
        self.assertEqual(kwargs["json"], {"estado": "activo"})


if __name__ == '__main__':
    unittest.main()
