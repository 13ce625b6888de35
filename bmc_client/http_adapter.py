"""
BMC HTTP Adapter

Every HTTP call made by the Redfish and vendor API drivers goes through
BMCHTTPAdapter.make_request(), which:
- Serializes requests per host via SessionManager
- Derives the read timeout from the operation context
- Enforces the expected status codes (anything else is a ProtocolError)
- Maps Redfish error bodies to readable messages
"""

import logging
import time
from typing import Any, Dict, Iterable, Optional, Tuple

import requests

from . import config
from .context import Context
from .errors import ProtocolError, TransportError, redfish_error_message
from .session_manager import SessionManager
from .utils import safe_json_parse


class BMCHTTPAdapter:
    """
    HTTP access to a single BMC.

    Args:
        host: BMC host
        base_url: Scheme, host and port, e.g. https://10.0.0.5
        session_manager: Shared SessionManager
        auth: Optional (username, password) for HTTP basic auth
        logger: Logger instance for operation logging
        session_key: SessionManager key (default: host); drivers that keep
            their own cookies or tokens use a key of their own
    """

    def __init__(
        self,
        host: str,
        base_url: str,
        session_manager: SessionManager,
        auth: Optional[Tuple[str, str]] = None,
        logger: Optional[logging.Logger] = None,
        connect_timeout: int = config.HTTP_CONNECT_TIMEOUT,
        read_timeout: int = config.HTTP_READ_TIMEOUT,
        session_key: Optional[str] = None
    ):
        self.host = host
        self.base_url = base_url.rstrip("/")
        self.session_manager = session_manager
        self.auth = auth
        self.logger = logger or logging.getLogger(__name__)
        self.connect_timeout = connect_timeout
        self.read_timeout = read_timeout
        self.headers: Dict[str, str] = {}
        self.session_key = session_key or host

    def url_for(self, endpoint: str) -> str:
        if endpoint.startswith("http://") or endpoint.startswith("https://"):
            return endpoint
        return f"{self.base_url}/{endpoint.lstrip('/')}"

    def _timeout(self, ctx: Context) -> Tuple[float, float]:
        read_timeout = float(self.read_timeout)
        remaining = ctx.remaining()
        if remaining is not None:
            read_timeout = max(0.1, min(read_timeout, remaining))
        return (min(self.connect_timeout, read_timeout), read_timeout)

    def make_request(
        self,
        ctx: Context,
        method: str,
        endpoint: str,
        expected_status: Iterable[int] = (200,),
        operation_name: Optional[str] = None,
        step: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None,
        **kwargs: Any
    ) -> requests.Response:
        """
        Unified request method for all BMC HTTP calls.

        Args:
            ctx: Operation context
            method: HTTP method (GET, POST, PATCH, PUT, DELETE)
            endpoint: Path relative to base_url, or a full URL
            expected_status: Status codes that count as success
            operation_name: Human-readable operation name for logging
            step: Step name reported in ProtocolError for multi-step protocols
            headers: Extra headers
            **kwargs: json, data, files, params - passed to requests

        Returns:
            requests.Response

        Raises:
            ContextError: ctx done before the call or while it was in flight
            TransportError: Connection-level failure
            ProtocolError: Unexpected status code
        """
        ctx.raise_if_done()

        url = self.url_for(endpoint)
        operation_name = operation_name or f"{method} {endpoint}"
        expected = tuple(expected_status)

        request_headers = dict(self.headers)
        if headers:
            request_headers.update(headers)

        start_time = time.time()
        try:
            response = self.session_manager.make_request(
                method,
                url,
                self.session_key,
                auth=self.auth,
                timeout=self._timeout(ctx),
                headers=request_headers,
                **kwargs
            )
        except requests.exceptions.RequestException as e:
            err = ctx.err()
            if err is not None:
                raise err
            self.logger.error(f"{operation_name} on {self.host} failed: {e}")
            raise TransportError(f"{operation_name} request to {self.host} failed: {e}")

        response_time_ms = int((time.time() - start_time) * 1000)
        self.logger.debug(
            f"{operation_name}: {method} {endpoint} -> {response.status_code} ({response_time_ms}ms)"
        )

        if response.status_code not in expected:
            error_data = safe_json_parse(response) if response.text else {}
            detail = ""
            if "error" in error_data:
                detail = redfish_error_message(error_data)
            elif "_raw_response" in error_data:
                detail = error_data["_raw_response"][:200]

            message = (
                f"{operation_name}: unexpected status {response.status_code} from {endpoint}, "
                f"expected {', '.join(str(s) for s in expected)}"
            )
            if detail:
                message = f"{message}: {detail}"
            if step:
                message = f"{step}: {message}"
            self.logger.error(message)
            raise ProtocolError(message, status_code=response.status_code, step=step)

        return response

    def get_json(self, ctx: Context, endpoint: str, operation_name: Optional[str] = None) -> Dict[str, Any]:
        response = self.make_request(ctx, "GET", endpoint, operation_name=operation_name)
        data = safe_json_parse(response)
        if "_parse_error" in data:
            raise ProtocolError(
                f"{operation_name or endpoint}: response is not valid JSON",
                status_code=response.status_code,
            )
        return data

    def close(self):
        self.session_manager.close_session(self.session_key)
