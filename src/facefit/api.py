"""
HTTP client for delivering export documents.

Provides functionality to:
- POST an export document for a target user
- Attach the bearer token from the session provider
- Map responses onto the facefit error taxonomy
"""

import logging
from dataclasses import dataclass
from typing import Optional, Dict, Any, Protocol

import httpx

from .exceptions import NetworkError, ServerError, Unauthorized, ValidationError

logger = logging.getLogger(__name__)

DEFAULT_REQUEST_TIMEOUT = 30.0


class SessionProvider(Protocol):
    """Authentication collaborator (implemented by the host application)."""

    @property
    def user_id(self) -> Optional[int]:
        ...

    @property
    def session_token(self) -> Optional[str]:
        ...

    @property
    def is_authenticated(self) -> bool:
        ...


@dataclass
class StaticSession:
    """Fixed session values, for scripts and tests."""
    user_id: Optional[int] = None
    session_token: Optional[str] = None

    @property
    def is_authenticated(self) -> bool:
        return self.session_token is not None


class UploadClient:
    """
    Uploads export documents to ``{base_url}/users/{id}/facial_measurements_from_arkit``.

    Usage:
        client = UploadClient("https://example.org", session)
        client.upload(document, user_id=42)   # raises on failure
        client.close()
    """

    def __init__(
        self,
        base_url: str,
        session: Optional[SessionProvider] = None,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT,
        transport: Optional[httpx.BaseTransport] = None
    ):
        """
        Args:
            base_url: Server root URL
            session: Source of the bearer token (None = anonymous)
            request_timeout: Per-request timeout in seconds
            transport: Optional httpx transport (used by tests)
        """
        self.base_url = base_url.rstrip("/")
        self.session = session
        self._client = httpx.Client(
            timeout=httpx.Timeout(request_timeout),
            transport=transport
        )

    def endpoint(self, user_id: int) -> str:
        return f"{self.base_url}/users/{user_id}/facial_measurements_from_arkit"

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        token = self.session.session_token if self.session else None
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    def upload(self, document: Dict[str, Any], user_id: int) -> None:
        """
        Deliver one export document.

        Args:
            document: Export document
            user_id: Target user

        Raises:
            NetworkError: Connection failure or timeout
            Unauthorized: 401
            ValidationError: 422
            ServerError: Any other non-201 status
        """
        url = self.endpoint(user_id)
        try:
            response = self._client.post(
                url,
                json={"arkit_data": document},
                headers=self._headers()
            )
        except httpx.TimeoutException as e:
            raise NetworkError(f"Request timed out: {e}") from e
        except httpx.TransportError as e:
            raise NetworkError(f"Network error: {e}") from e

        status = response.status_code
        if status == 201:
            logger.debug(f"Uploaded export for user {user_id}")
            return
        if status == 401:
            raise Unauthorized()
        if status == 422:
            raise ValidationError(self._validation_messages(response))
        raise ServerError(status)

    @staticmethod
    def _validation_messages(response: httpx.Response):
        try:
            body = response.json()
        except ValueError:
            return []
        if isinstance(body, dict) and isinstance(body.get("messages"), list):
            return [str(m) for m in body["messages"]]
        return []

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "UploadClient":
        return self

    def __exit__(self, *exc) -> None:
        self.close()
