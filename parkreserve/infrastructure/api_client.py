# File: parkreserve/infrastructure/api_client.py
"""
HTTP Client for the Reservation Backend

Single entry point for every REST call the client makes:
1. JSON requests with Accept/Content-Type headers and a fixed timeout
2. Bearer token read from client storage on every request
3. Error transformation into ApiError(message, status, errors)
4. 401 handling: persisted session cleared, on_auth_error callback fired

No retries are attempted; a failed call surfaces to the caller once.
"""

from typing import Any, Callable, Dict, List, Optional
import logging

import requests

from ..domain.exceptions import ApiError, AuthenticationError
from ..application.dtos import ApiResponseDTO
from .storage import ClientStorage, InMemoryStorage, TOKEN_KEY

DEFAULT_BASE_URL = "http://localhost:8000/api"
DEFAULT_TIMEOUT_SECONDS = 10
CONNECTION_ERROR_MESSAGE = "Error de conexión"


class ApiClient:
    """
    Thin wrapper over a requests.Session bound to the backend base URL

    Successful calls return the decoded JSON body. Use unwrap() to check the
    {success, data, message, errors} envelope and get at the payload.
    """

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        storage: Optional[ClientStorage] = None,
        session: Optional[requests.Session] = None,
        on_auth_error: Optional[Callable[[], None]] = None
    ):
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.storage = storage or InMemoryStorage()
        self.session = session or requests.Session()
        self.session.headers.update({
            'Content-Type': 'application/json; charset=utf-8',
            'Accept': 'application/json'
        })
        self.on_auth_error = on_auth_error
        self._logger = logging.getLogger(self.__class__.__name__)

    # ------------------------------------------------------------------
    # Token handling
    # ------------------------------------------------------------------

    def set_auth_token(self, token: str) -> None:
        self.storage.set_item(TOKEN_KEY, token)

    def clear_auth_token(self) -> None:
        self.storage.remove_item(TOKEN_KEY)

    def get_auth_token(self) -> Optional[str]:
        return self.storage.get_item(TOKEN_KEY)

    def is_authenticated(self) -> bool:
        return bool(self.get_auth_token())

    # ------------------------------------------------------------------
    # HTTP verbs
    # ------------------------------------------------------------------

    def get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        return self.request('GET', path, params=params)

    def post(self, path: str, data: Optional[Dict[str, Any]] = None) -> Any:
        return self.request('POST', path, data=data if data is not None else {})

    def put(self, path: str, data: Optional[Dict[str, Any]] = None) -> Any:
        return self.request('PUT', path, data=data if data is not None else {})

    def patch(self, path: str, data: Optional[Dict[str, Any]] = None) -> Any:
        return self.request('PATCH', path, data=data if data is not None else {})

    def delete(self, path: str) -> Any:
        return self.request('DELETE', path)

    def request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        data: Optional[Dict[str, Any]] = None
    ) -> Any:
        """
        Perform a request and return the decoded JSON body (None if empty)

        Raises: ApiError for transport and HTTP errors,
                AuthenticationError for 401
        """
        url = f"{self.base_url}/{path.lstrip('/')}"
        headers = {}
        token = self.get_auth_token()
        if token:
            headers['Authorization'] = f"Bearer {token}"

        try:
            response = self.session.request(
                method,
                url,
                params=params,
                json=data,
                headers=headers,
                timeout=self.timeout
            )
        except requests.RequestException as e:
            self._logger.error(f"API Error: {method} {path} - {e}")
            raise ApiError(str(e) or CONNECTION_ERROR_MESSAGE, status=0) from e

        body = self._decode(response)

        if response.status_code >= 400:
            raise self._transform_error(method, path, response, body)

        self._logger.debug(f"API Success: {method} {path}")
        return body

    # ------------------------------------------------------------------
    # Envelope and errors
    # ------------------------------------------------------------------

    @staticmethod
    def unwrap(body: Any, failure_message: str = "Respuesta inválida del servidor") -> Any:
        """
        Validate the response envelope and return its data

        Raises: ApiError if success is false or the body is not an envelope
        """
        if not isinstance(body, dict):
            raise ApiError(failure_message)

        envelope = ApiResponseDTO.from_dict(body)
        if not envelope.success:
            raise ApiError(envelope.message or failure_message, errors=envelope.errors)
        return envelope.data

    @staticmethod
    def _decode(response: requests.Response) -> Any:
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return None

    def _transform_error(
        self,
        method: str,
        path: str,
        response: requests.Response,
        body: Any
    ) -> ApiError:
        status = response.status_code
        body = body if isinstance(body, dict) else {}
        errors: Dict[str, List[str]] = body.get('errors') or {}

        message = body.get('message') or response.reason or CONNECTION_ERROR_MESSAGE
        if status == 422 and errors:
            message = ", ".join(msg for messages in errors.values() for msg in messages)

        self._logger.error(f"API Error: {method} {path} - status {status}: {message}")

        if status == 401:
            self._logger.warning("Token expired or invalid, clearing session")
            self.storage.clear_session()
            if self.on_auth_error is not None:
                self.on_auth_error()
            return AuthenticationError(message, status=status)

        return ApiError(message, status=status, errors=errors)
