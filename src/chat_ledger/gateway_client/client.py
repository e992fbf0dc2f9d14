"""
Messaging gateway API client implementation.
"""

import logging
from typing import Any

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

logger = logging.getLogger(__name__)


class GatewayError(Exception):
    """Base exception for gateway client errors."""

    pass


class GatewayAPIError(GatewayError):
    """API returned an error response."""

    def __init__(self, status_code: int, message: str, response_body: str | None = None):
        self.status_code = status_code
        self.message = message
        self.response_body = response_body
        super().__init__(f"Gateway API error {status_code}: {message}")


class GatewayConnectionError(GatewayError):
    """Failed to connect to the gateway."""

    pass


class GatewayClient:
    """
    Client for the chat messaging gateway.

    Features:
    - Send text messages to a phone
    - Health check
    - Automatic retry with backoff
    """

    DEFAULT_TIMEOUT = 15

    def __init__(
        self,
        base_url: str,
        token: str = "",
        timeout: int = DEFAULT_TIMEOUT,
        max_retries: int = 3,
        backoff_factor: float = 0.5,
    ):
        """
        Initialize gateway client.

        Args:
            base_url: Gateway URL (e.g., "http://localhost:3002")
            token: Bearer token (optional)
            timeout: Request timeout in seconds
            max_retries: Maximum retry attempts for transient failures
            backoff_factor: Backoff factor for retries
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

        self.session = requests.Session()
        self.session.headers.update({"Accept": "application/json"})
        if token:
            self.session.headers["Authorization"] = f"Bearer {token}"

        retry_strategy = Retry(
            total=max_retries,
            backoff_factor=backoff_factor,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=["GET", "POST"],
        )
        adapter = HTTPAdapter(max_retries=retry_strategy)
        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)

    def _request(
        self,
        method: str,
        endpoint: str,
        json_data: dict | None = None,
    ) -> requests.Response:
        """Make an API request with error handling."""
        url = f"{self.base_url}{endpoint}"

        try:
            response = self.session.request(
                method=method,
                url=url,
                json=json_data,
                timeout=self.timeout,
            )
        except requests.exceptions.ConnectionError as e:
            raise GatewayConnectionError(f"Failed to connect to gateway at {self.base_url}: {e}")
        except requests.exceptions.Timeout as e:
            raise GatewayConnectionError(f"Request to gateway timed out: {e}")
        except requests.exceptions.RequestException as e:
            raise GatewayError(f"Request failed: {e}")

        if not response.ok:
            raise GatewayAPIError(
                status_code=response.status_code,
                message=response.reason,
                response_body=response.text,
            )

        return response

    def test_connection(self) -> bool:
        """Test connection to the gateway."""
        try:
            self._request("GET", "/api/health")
            return True
        except GatewayError:
            return False

    def send_text(self, phone: str, text: str) -> dict[str, Any]:
        """
        Send a text message.

        Args:
            phone: Recipient phone (without gateway suffix)
            text: Message body

        Returns:
            Gateway response body

        Raises:
            ValueError: If text is empty
            GatewayError: On connection or API failure
        """
        if not text or not text.strip():
            raise ValueError("Message text must not be empty")

        response = self._request(
            "POST",
            "/api/messages/send",
            json_data={"phone": phone, "message": text},
        )
        logger.info(f"Sent message to {phone}")
        if not response.content:
            return {}
        return response.json()
