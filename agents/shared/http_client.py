"""Shared HTTP client for read-side API access.

Provides session reuse, retry with backoff and structured request/response
logging for agents that read entity collections over HTTP.
"""

import logging
import time
from typing import Dict, Any, Optional
from dataclasses import dataclass
import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry


@dataclass
class ApiRequest:
    """Represents an outgoing API request."""

    method: str
    url: str
    headers: Dict[str, str]
    params: Optional[Dict[str, Any]] = None
    timeout: int = 10
    correlation_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging."""
        return {
            "method": self.method,
            "url": self.url,
            "headers": {k: v for k, v in self.headers.items() if k.lower() != 'authorization'},
            "params": self.params,
            "timeout": self.timeout,
            "correlation_id": self.correlation_id,
        }


@dataclass
class ApiResponse:
    """Represents an API response."""

    status_code: int
    data: Any
    request_time: float
    correlation_id: Optional[str] = None

    @property
    def is_success(self) -> bool:
        """Check if response indicates success."""
        return 200 <= self.status_code < 300


class ApiClient:
    """HTTP client with retry logic and observability.

    Idempotent methods are retried on 429 and 5xx responses with
    exponential backoff.
    """

    def __init__(
        self,
        base_url: str = "http://localhost:8000",
        timeout: int = 10,
        max_retries: int = 3,
        backoff_factor: float = 0.3,
        token: Optional[str] = None,
    ):
        """Initialize API client.

        Args:
            base_url: Base URL for the API
            timeout: Request timeout in seconds
            max_retries: Maximum number of retries
            backoff_factor: Backoff factor for retries
            token: Optional bearer token
        """
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.token = token

        self.session = requests.Session()

        retry_strategy = Retry(
            total=max_retries,
            backoff_factor=backoff_factor,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=["HEAD", "GET", "OPTIONS"],
        )

        adapter = HTTPAdapter(max_retries=retry_strategy)
        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)

        self.logger = logging.getLogger(__name__)

    def get(
        self,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        timeout: Optional[int] = None,
        correlation_id: Optional[str] = None,
    ) -> ApiResponse:
        """Make GET request.

        Args:
            endpoint: API endpoint path
            params: Query parameters
            headers: Extra request headers
            timeout: Request timeout
            correlation_id: Correlation ID for tracing

        Returns:
            API response object

        Raises:
            requests.RequestException: On transport failure after retries
        """
        headers = dict(headers or {})
        timeout = timeout or self.timeout

        if correlation_id:
            headers["X-Correlation-ID"] = correlation_id
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        headers.setdefault("Accept", "application/json")
        headers.setdefault("User-Agent", "compliance-automation/1.0")

        request = ApiRequest(
            method="GET",
            url=f"{self.base_url}{endpoint}",
            headers=headers,
            params=params,
            timeout=timeout,
            correlation_id=correlation_id,
        )

        self.logger.debug("API request", extra={
            "request": request.to_dict(),
            "correlation_id": correlation_id,
        })

        start_time = time.time()

        try:
            response = self.session.get(
                request.url,
                headers=headers,
                params=params,
                timeout=timeout,
            )
        except requests.RequestException as e:
            self.logger.error("API request failed", extra={
                "error": str(e),
                "request": request.to_dict(),
                "request_time": time.time() - start_time,
                "correlation_id": correlation_id,
            })
            raise

        try:
            data = response.json()
        except ValueError:
            data = {"error": "Invalid JSON response"}

        api_response = ApiResponse(
            status_code=response.status_code,
            data=data,
            request_time=time.time() - start_time,
            correlation_id=correlation_id,
        )

        self.logger.debug("API response", extra={
            "status_code": api_response.status_code,
            "request_time": api_response.request_time,
            "correlation_id": correlation_id,
        })

        return api_response

    def close(self):
        """Close the client session."""
        self.session.close()
