# fleet_backup_sync/client.py
"""
HTTP client for the MyGeotab JSON-RPC API.

Every request is an HTTP POST of {"method": ..., "params": {...}} to
https://<server>/apiv1. The client authenticates once, keeps the returned
session credentials, and injects them into every subsequent call.

Error Classification:
---------------------
The client does not retry. It translates every failure into one exception
class so the scheduler can pick a backoff policy:

- RateLimitError: HTTP 429 or OverLimitException
- TransientAPIError: timeouts, connection errors, 5xx, malformed JSON,
  DbUnavailableException and similar server-side hiccups
- AuthenticationError: InvalidUserException (bad credentials, expired session)
- InvalidApiOperationError: other 4xx and every other JSON-RPC error

Session Expiry:
---------------
When an authenticated call fails with InvalidUserException the session has
usually expired. The client re-authenticates once and repeats the call; a
second failure is raised as AuthenticationError.

SSL/TLS Handling:
-----------------
Supports standard verification, disabled verification, a custom CA bundle
path, or the OS trust store (use_truststore=True) for proxy environments.
"""

import logging
from ssl import SSLContext
from types import TracebackType
from typing import Any, Final, Self

import httpx

from fleet_backup_sync.common import build_truststore_ssl_context
from fleet_backup_sync.config import ApiConfig
from fleet_backup_sync.models import JsonRpcError, LoginCredentials

__all__: list[str] = [
    'APIError',
    'AuthenticationError',
    'GeotabClient',
    'InvalidApiOperationError',
    'RateLimitError',
    'TransientAPIError',
]

logger: logging.Logger = logging.getLogger(__name__)

# HTTP status codes
HTTP_STATUS_RATE_LIMITED: Final[int] = 429
HTTP_STATUS_SERVER_ERROR_MIN: Final[int] = 500
HTTP_STATUS_SERVER_ERROR_MAX: Final[int] = 599

# Server redirect value meaning "keep using the server you authenticated against"
SAME_SERVER_PATH: Final[str] = 'ThisServer'

# JSON-RPC exception names, grouped by how the scheduler should react
AUTHENTICATION_ERROR_NAMES: Final[frozenset[str]] = frozenset(
    {'InvalidUserException'}
)
RATE_LIMIT_ERROR_NAMES: Final[frozenset[str]] = frozenset({'OverLimitException'})
TRANSIENT_ERROR_NAMES: Final[frozenset[str]] = frozenset(
    {
        'DbUnavailableException',
        'ServiceUnavailableException',
        'TimeoutException',
    }
)


# =============================================================================
# Exception Hierarchy
# =============================================================================


class APIError(Exception):
    """
    Base exception for API errors.

    Attributes:
        status_code: HTTP status code if available, None otherwise.
        error_name: JSON-RPC exception name if the server supplied one.
        response_body: Raw response body for debugging, None if unavailable.
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        error_name: str | None = None,
        response_body: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code: int | None = status_code
        self.error_name: str | None = error_name
        self.response_body: str | None = response_body


class AuthenticationError(APIError):
    """Raised when no valid session can be obtained. Fatal."""


class InvalidApiOperationError(APIError):
    """
    Raised for requests the server rejects as invalid.

    Covers client-side HTTP errors and JSON-RPC errors such as
    ArgumentException or MissingMethodException. Retrying the same request
    would fail the same way, so this is fatal.
    """


class TransientAPIError(APIError):
    """
    Raised for errors that may clear up on their own.

    Includes timeouts, connection errors, server errors (5xx), malformed
    responses and temporary server-side unavailability.
    """


class RateLimitError(TransientAPIError):
    """Raised when the account's query limit has been exceeded."""


# =============================================================================
# HTTP Client
# =============================================================================


class GeotabClient:
    """
    JSON-RPC client for MyGeotab.

    The client handles:
    - HTTP transport with connection pooling
    - Authentication and session credential injection
    - Server redirection after authentication
    - Translation of HTTP and JSON-RPC failures into typed exceptions

    Thread Safety:
        Designed for use from the scheduler thread only.

    Example:
        >>> with GeotabClient(config.api) as client:
        ...     client.authenticate()
        ...     devices = client.get('Device')
    """

    def __init__(
        self,
        api_config: ApiConfig,
        pool_connections: int = 5,
        pool_maxsize: int = 10,
    ) -> None:
        """
        Initialize the MyGeotab client.

        Args:
            api_config: Server, credentials, timeouts and SSL configuration.
            pool_connections: Maximum number of keepalive connections.
            pool_maxsize: Maximum total connections allowed in the pool.

        Raises:
            RuntimeError: If use_truststore=True and truststore is missing.
        """
        self._api_config: ApiConfig = api_config
        self._endpoint_url: str = api_config.endpoint_url
        self._credentials: LoginCredentials | None = None

        ssl_verify: SSLContext | bool | str = self._build_ssl_context()

        connect_timeout: int
        read_timeout: int
        connect_timeout, read_timeout = api_config.request_timeout
        default_timeout = httpx.Timeout(
            connect=connect_timeout,
            read=read_timeout,
            write=connect_timeout,
            pool=connect_timeout,
        )

        self._http_client: httpx.Client = httpx.Client(
            timeout=default_timeout,
            verify=ssl_verify,
            limits=httpx.Limits(
                max_keepalive_connections=pool_connections,
                max_connections=pool_maxsize,
            ),
        )

        logger.info(
            'Initialized GeotabClient: server=%r, database=%r, user=%r',
            api_config.server,
            api_config.database,
            api_config.username,
        )

    def _build_ssl_context(self) -> SSLContext | bool | str:
        """Build the httpx `verify` argument from configuration."""
        if self._api_config.use_truststore:
            logger.debug('Building SSLContext from OS trust store')
            return build_truststore_ssl_context()

        logger.debug('Using SSL verification setting: %r', self._api_config.verify_ssl)
        return self._api_config.verify_ssl

    # -------------------------------------------------------------------------
    # Context Manager Protocol
    # -------------------------------------------------------------------------

    def close(self) -> None:
        """Close the HTTP client and release pooled connections."""
        self._http_client.close()
        logger.debug('GeotabClient closed')

    def __enter__(self) -> Self:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.close()

    # -------------------------------------------------------------------------
    # Session
    # -------------------------------------------------------------------------

    @property
    def is_authenticated(self) -> bool:
        """Whether a session has been established."""
        return self._credentials is not None

    @property
    def endpoint_url(self) -> str:
        """Current JSON-RPC endpoint (may change after authentication)."""
        return self._endpoint_url

    def authenticate(self) -> LoginCredentials:
        """
        Exchange user name and password for session credentials.

        Returns:
            The session credentials now attached to every call.

        Raises:
            AuthenticationError: If the server rejects the credentials or
                returns no session.
            TransientAPIError: On network failures or server errors.
            InvalidApiOperationError: On other protocol errors.
        """
        api_config: ApiConfig = self._api_config
        logger.info(
            'Authenticating user %r against database %r on %s',
            api_config.username,
            api_config.database,
            api_config.server,
        )

        self._endpoint_url = api_config.endpoint_url
        result: Any = self._post(
            'Authenticate',
            {
                'database': api_config.database,
                'userName': api_config.username,
                'password': api_config.password.get_secret_value(),
            },
        )

        if not isinstance(result, dict) or not isinstance(
            result.get('credentials'), dict
        ):
            raise AuthenticationError('Authenticate returned no session credentials')

        try:
            credentials: LoginCredentials = LoginCredentials.model_validate(
                result['credentials']
            )
        except ValueError as error:
            raise AuthenticationError(
                f'Authenticate returned malformed credentials: {error}'
            ) from error

        path: Any = result.get('path')
        if isinstance(path, str) and path and path != SAME_SERVER_PATH:
            self._endpoint_url = f'https://{path.strip("/")}/apiv1'
            logger.info('Redirected to server %s', path)

        self._credentials = credentials
        logger.info('Authentication successful')
        return credentials

    # -------------------------------------------------------------------------
    # Calls
    # -------------------------------------------------------------------------

    def call(self, method: str, **params: Any) -> Any:
        """
        Invoke an API method with the current session credentials.

        Authenticates first if no session exists. If the session has expired,
        re-authenticates once and repeats the call.

        Args:
            method: JSON-RPC method name (e.g., 'Get', 'ExecuteMultiCall').
            **params: Method parameters, excluding credentials.

        Returns:
            The "result" member of the JSON-RPC response.

        Raises:
            AuthenticationError: If a valid session cannot be obtained.
            RateLimitError: If the query limit has been exceeded.
            TransientAPIError: On retryable failures.
            InvalidApiOperationError: On non-retryable failures.
        """
        if self._credentials is None:
            self.authenticate()

        try:
            return self._post(method, self._with_credentials(params))
        except AuthenticationError:
            logger.warning('Session rejected during %s, re-authenticating', method)
            self.authenticate()
            return self._post(method, self._with_credentials(params))

    def get(self, type_name: str, **params: Any) -> list[Any]:
        """
        Fetch entities of a type, e.g. get('Device').

        Raises:
            InvalidApiOperationError: If the result is not a list.
        """
        result: Any = self.call('Get', typeName=type_name, **params)
        if result is None:
            return []
        if not isinstance(result, list):
            raise InvalidApiOperationError(
                f'Expected a list from Get {type_name}, got {type(result).__name__}'
            )
        return result

    def multi_call(self, calls: list[dict[str, Any]]) -> list[Any]:
        """
        Execute several calls in one ExecuteMultiCall request.

        Args:
            calls: Call descriptions of the form {"method": ..., "params": ...}.
                Credentials are added by the server from the outer request.

        Returns:
            One result per call, in request order.

        Raises:
            TransientAPIError: If the response is not a list of the expected
                length.
        """
        if not calls:
            return []

        result: Any = self.call('ExecuteMultiCall', calls=calls)
        if not isinstance(result, list):
            raise TransientAPIError(
                f'Expected a list from ExecuteMultiCall, got {type(result).__name__}'
            )
        if len(result) != len(calls):
            logger.warning(
                'ExecuteMultiCall returned %d results for %d calls',
                len(result),
                len(calls),
            )
        return result

    def _with_credentials(self, params: dict[str, Any]) -> dict[str, Any]:
        if self._credentials is None:
            raise AuthenticationError('No session credentials available')
        return {**params, 'credentials': self._credentials.to_params()}

    # -------------------------------------------------------------------------
    # HTTP Execution Layer
    # -------------------------------------------------------------------------

    def _post(self, method: str, params: dict[str, Any]) -> Any:
        """Send one JSON-RPC request and return its result."""
        response: httpx.Response = self._send_http_request(method, params)
        return self._handle_response(method, response)

    def _send_http_request(self, method: str, params: dict[str, Any]) -> httpx.Response:
        """
        Send the HTTP request, converting transport errors to TransientAPIError.
        """
        try:
            return self._http_client.request(
                method='POST',
                url=self._endpoint_url,
                json={'method': method, 'params': params},
            )
        except httpx.TimeoutException as error:
            logger.warning('Request timeout during %s: %s', method, self._endpoint_url)
            raise TransientAPIError(f'Request timeout: {error}') from error
        except httpx.RequestError as error:
            logger.warning(
                'Connection error during %s: %s - %s', method, self._endpoint_url, error
            )
            raise TransientAPIError(f'Connection error: {error}') from error

    def _handle_response(self, method: str, response: httpx.Response) -> Any:
        """
        Validate the HTTP response and unwrap the JSON-RPC envelope.

        Raises:
            RateLimitError: On HTTP 429 or OverLimitException.
            TransientAPIError: On 5xx, malformed JSON or transient server errors.
            AuthenticationError: On InvalidUserException.
            InvalidApiOperationError: On other client errors.
        """
        status_code: int = response.status_code

        if status_code == HTTP_STATUS_RATE_LIMITED:
            raise RateLimitError(
                f'Rate limit exceeded during {method}',
                status_code=status_code,
            )

        if HTTP_STATUS_SERVER_ERROR_MIN <= status_code <= HTTP_STATUS_SERVER_ERROR_MAX:
            logger.warning('Server error %d during %s', status_code, method)
            raise TransientAPIError(
                f'Server error: HTTP {status_code}',
                status_code=status_code,
                response_body=response.text[:500],
            )

        if not response.is_success:
            raise InvalidApiOperationError(
                f'Client error: HTTP {status_code}',
                status_code=status_code,
                response_body=response.text[:500],
            )

        try:
            json_body: Any = response.json()
        except ValueError as parse_error:
            raise TransientAPIError(
                f'Invalid JSON in response to {method}: {parse_error}',
                status_code=status_code,
                response_body=response.text[:500],
            ) from parse_error

        if not isinstance(json_body, dict):
            raise TransientAPIError(
                f'Expected JSON object in response to {method}, '
                f'got {type(json_body).__name__}',
                status_code=status_code,
                response_body=response.text[:500],
            )

        if json_body.get('error') is not None:
            raise self._classify_rpc_error(
                method, JsonRpcError.from_payload(json_body['error'])
            )

        return json_body.get('result')

    @staticmethod
    def _classify_rpc_error(method: str, rpc_error: JsonRpcError) -> APIError:
        """Map a JSON-RPC error onto the exception hierarchy."""
        error_name: str = rpc_error.exception_name
        message: str = (
            f'{method} failed: {error_name or "JSONRPCError"}: '
            f'{rpc_error.detail_message}'
        )

        if error_name in AUTHENTICATION_ERROR_NAMES:
            return AuthenticationError(message, error_name=error_name)
        if error_name in RATE_LIMIT_ERROR_NAMES:
            return RateLimitError(message, error_name=error_name)
        if error_name in TRANSIENT_ERROR_NAMES:
            return TransientAPIError(message, error_name=error_name)
        return InvalidApiOperationError(message, error_name=error_name)
