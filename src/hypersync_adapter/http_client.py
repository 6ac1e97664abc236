"""
HTTPClient module for JSON requests to the external service with retry logic
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Dict, Any, List, Optional
from urllib.parse import urljoin

import requests
from requests.auth import HTTPBasicAuth

from .config_loader import ConfigLoader
from .exceptions import ExternalAPIError


@dataclass
class APIResponse:
    """Standardised JSON response wrapper"""
    json: Any
    source: str
    headers: Dict[str, List[str]] = field(default_factory=dict)
    status_code: int = 200


class HTTPClient:
    """HTTP client with authentication, retry logic, and rate limiting"""

    # HTTP status codes that should trigger retries
    RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}

    def __init__(self, headers: Optional[Dict[str, str]] = None,
                 base_url: Optional[str] = None, max_retries: int = 3,
                 backoff_factor: float = 2.0, requests_per_second: float = 2.0,
                 timeout: float = 30.0):
        self.headers: Dict[str, str] = dict(headers or {})
        self.base_url = base_url
        self.max_retries = max_retries
        self.backoff_factor = backoff_factor
        self.requests_per_second = requests_per_second
        self.timeout = timeout
        self.auth: Optional[HTTPBasicAuth] = None
        self.session: Optional[requests.Session] = None
        self.last_request_time: Optional[float] = None
        self.logger = logging.getLogger(__name__)

    def authenticate(self, credentials: Dict[str, Any]) -> None:
        """
        Configure authentication headers based on credential type

        Values may be given directly or through `<name>_env` keys naming
        an environment variable.

        Args:
            credentials: Dictionary containing authentication information

        Raises:
            ValueError: If authentication type is not supported
        """
        def credential(name: str) -> str:
            if f"{name}_env" in credentials:
                return ConfigLoader.get_environment_value(credentials[f"{name}_env"])
            return credentials[name]

        auth_type = credentials.get('type')

        if auth_type == 'api_key':
            header_name = credentials.get('header', 'X-API-Key')
            self.headers[header_name] = credential('api_key')

        elif auth_type == 'bearer_token':
            self.headers['Authorization'] = f"Bearer {credential('token')}"

        elif auth_type == 'basic':
            self.auth = HTTPBasicAuth(credential('username'), credential('password'))

        else:
            raise ValueError(f"Unsupported authentication type: {auth_type}")

    def set_base_url(self, base_url: Optional[str]) -> None:
        self.base_url = base_url

    def set_headers(self, headers: Dict[str, str]) -> None:
        self.headers = dict(headers)

    def set_retry_count(self, retry_count: int) -> None:
        self.max_retries = retry_count

    def build_url(self, url: str, is_absolute_url: bool = False) -> str:
        if is_absolute_url or not self.base_url:
            return url
        return urljoin(self.base_url, url)

    def get_json(self, url: str, headers: Optional[Dict[str, str]] = None) -> APIResponse:
        return self.request_json('GET', url, headers=headers)

    def post_json(self, url: str, body: Any,
                  headers: Optional[Dict[str, str]] = None) -> APIResponse:
        return self.request_json('POST', url, body=body, headers=headers)

    def patch_json(self, url: str, body: Any,
                   headers: Optional[Dict[str, str]] = None) -> APIResponse:
        return self.request_json('PATCH', url, body=body, headers=headers)

    def put_json(self, url: str, body: Any,
                 headers: Optional[Dict[str, str]] = None) -> APIResponse:
        return self.request_json('PUT', url, body=body, headers=headers)

    def get_unprocessed_response(self, url: str, headers: Optional[Dict[str, str]] = None,
                                 is_absolute_url: bool = False) -> requests.Response:
        """Send a GET request and return the raw response without parsing"""
        return self.send('GET', self.build_url(url, is_absolute_url), headers=headers)

    def request_json(self, method: str, url: str, body: Any = None,
                     headers: Optional[Dict[str, str]] = None,
                     is_absolute_url: bool = False) -> APIResponse:
        """
        Make a JSON request and wrap the parsed response

        Returns:
            APIResponse with parsed JSON (None for an empty body), the
            absolute URL requested, and multi-valued headers
        """
        source = self.build_url(url, is_absolute_url)
        response = self.send(method, source, body=body, headers=headers)

        if response.content:
            try:
                data = response.json()
            except ValueError as e:
                raise ExternalAPIError(
                    f"Invalid JSON received from {source}: {e}",
                    status=response.status_code,
                    response=response
                ) from e
        else:
            data = None

        return APIResponse(
            json=data,
            source=source,
            headers={name: [value] for name, value in response.headers.items()},
            status_code=response.status_code
        )

    def send(self, method: str, url: str, body: Any = None,
             headers: Optional[Dict[str, str]] = None) -> requests.Response:
        """
        Send a request with integrated retry logic and exponential backoff

        Raises:
            ExternalAPIError: If the request fails after all retry attempts
                or with a non-retryable status
        """
        if self.session is None:
            self.session = requests.Session()

        combined_headers = {'Accept': 'application/json', **self.headers, **(headers or {})}
        retry_count = 0

        while True:
            self.apply_rate_limit()
            response = None
            try:
                response = self.session.request(
                    method,
                    url,
                    json=body if method != 'GET' else None,
                    headers=combined_headers,
                    auth=self.auth,
                    timeout=self.timeout
                )
                self.last_request_time = time.time()
                response.raise_for_status()
                return response

            except requests.exceptions.HTTPError as e:
                status = response.status_code if response is not None else None
                if status not in self.RETRYABLE_STATUS_CODES:
                    raise ExternalAPIError(
                        f"{method} {url} failed with status {status}: {e}",
                        status=status,
                        response=response
                    ) from e
                if retry_count >= self.max_retries:
                    raise ExternalAPIError(
                        f"Failed after {self.max_retries} retry attempts. Last error: {e}",
                        status=status,
                        response=response
                    ) from e
                delay = self.calculate_delay(retry_count, response)

            except requests.exceptions.RequestException as e:
                # Network-level errors are retryable
                self.last_request_time = time.time()
                if retry_count >= self.max_retries:
                    raise ExternalAPIError(
                        f"Failed after {self.max_retries} retry attempts. Last error: {e}"
                    ) from e
                delay = self.calculate_delay(retry_count, None)

            retry_count += 1
            self.logger.warning(
                f"Retrying {method} {url} in {delay:.1f}s (attempt {retry_count} of {self.max_retries})"
            )
            time.sleep(delay)

    def calculate_delay(self, retry_count: int, response: Optional[requests.Response]) -> float:
        """
        Exponential backoff delay, overridden by a numeric Retry-After header

        Uses 1 second base delay: base_delay * (factor ^ retry_count)
        """
        if response is not None:
            retry_after = response.headers.get('Retry-After')
            if retry_after is not None:
                try:
                    return max(0.0, float(retry_after))
                except ValueError:
                    pass
        return 1.0 * (self.backoff_factor ** retry_count)

    def apply_rate_limit(self) -> None:
        """
        Apply rate limiting delay to respect API quotas
        """
        if self.last_request_time is None or self.requests_per_second <= 0:
            return

        time_since_last = time.time() - self.last_request_time
        min_delay = 1.0 / self.requests_per_second

        if time_since_last < min_delay:
            time.sleep(min_delay - time_since_last)

    def close_connection(self) -> None:
        """
        Close HTTP session and release resources
        """
        if self.session:
            self.session.close()
            self.session = None
