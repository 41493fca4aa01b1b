"""
Tests for fleet_backup_sync.client module.

Tests GeotabClient authentication, server redirection, credential injection,
and the translation of HTTP and JSON-RPC failures into typed exceptions.
"""
# pyright: reportPrivateUsage=false

from collections.abc import Callable
from typing import Any
from unittest.mock import Mock, patch

import httpx
import pytest

from fleet_backup_sync.client import (
    APIError,
    AuthenticationError,
    GeotabClient,
    InvalidApiOperationError,
    RateLimitError,
    TransientAPIError,
)
from fleet_backup_sync.config import ApiConfig


def rpc_error(name: str, message: str = 'failure') -> dict[str, Any]:
    """Build a MyGeotab JSON-RPC error envelope."""
    return {
        'error': {
            'name': 'JSONRPCError',
            'message': 'An error occurred',
            'errors': [{'name': name, 'message': message}],
        }
    }


class TestGeotabClientInitialization:
    """Test GeotabClient initialization."""

    def test_initialization_uses_configured_endpoint(
        self,
        api_config: ApiConfig,
    ) -> None:
        """Should target https://<server>/apiv1 and start unauthenticated."""
        with GeotabClient(api_config) as client:
            assert client.endpoint_url == 'https://my.geotab.com/apiv1'
            assert client.is_authenticated is False

    def test_initialization_with_custom_pool_settings(
        self,
        api_config: ApiConfig,
    ) -> None:
        """Should accept custom connection pool settings."""
        client = GeotabClient(api_config, pool_connections=2, pool_maxsize=4)

        assert client is not None

        client.close()


class TestGeotabClientAuthentication:
    """Test GeotabClient.authenticate()."""

    def test_authenticate_sends_credentials_and_stores_session(
        self,
        api_config: ApiConfig,
        make_response: Callable[..., Mock],
        auth_result: dict[str, Any],
    ) -> None:
        """Should post Authenticate with database, user and password."""
        with (
            GeotabClient(api_config) as client,
            patch.object(
                client._http_client,
                'request',
                return_value=make_response(auth_result),
            ) as mock_request,
        ):
            credentials = client.authenticate()

            assert client.is_authenticated is True
            assert credentials.session_id.get_secret_value() == 'session-123'

            call_kwargs: dict[str, Any] = mock_request.call_args.kwargs
            assert call_kwargs['method'] == 'POST'
            assert call_kwargs['url'] == 'https://my.geotab.com/apiv1'
            assert call_kwargs['json'] == {
                'method': 'Authenticate',
                'params': {
                    'database': 'demo_db',
                    'userName': 'backup@example.com',
                    'password': 'hunter2',
                },
            }

    def test_authenticate_follows_server_redirect(
        self,
        api_config: ApiConfig,
        make_response: Callable[..., Mock],
        auth_result: dict[str, Any],
    ) -> None:
        """Should switch to the server named in path for later calls."""
        auth_result['result']['path'] = 'my3.geotab.com'

        with (
            GeotabClient(api_config) as client,
            patch.object(
                client._http_client,
                'request',
                side_effect=[
                    make_response(auth_result),
                    make_response({'result': []}),
                ],
            ) as mock_request,
        ):
            client.authenticate()
            client.get('Device')

            assert client.endpoint_url == 'https://my3.geotab.com/apiv1'
            assert mock_request.call_args.kwargs['url'] == 'https://my3.geotab.com/apiv1'

    def test_authenticate_this_server_keeps_endpoint(
        self,
        api_config: ApiConfig,
        make_response: Callable[..., Mock],
        auth_result: dict[str, Any],
    ) -> None:
        """Should stay on the configured server when path is ThisServer."""
        with (
            GeotabClient(api_config) as client,
            patch.object(
                client._http_client, 'request', return_value=make_response(auth_result)
            ),
        ):
            client.authenticate()

            assert client.endpoint_url == 'https://my.geotab.com/apiv1'

    def test_invalid_user_raises_authentication_error(
        self,
        api_config: ApiConfig,
        make_response: Callable[..., Mock],
    ) -> None:
        """Should raise AuthenticationError for rejected credentials."""
        with (
            GeotabClient(api_config) as client,
            patch.object(
                client._http_client,
                'request',
                return_value=make_response(rpc_error('InvalidUserException')),
            ),
            pytest.raises(AuthenticationError),
        ):
            client.authenticate()

    def test_missing_credentials_in_result_raise(
        self,
        api_config: ApiConfig,
        make_response: Callable[..., Mock],
    ) -> None:
        """Should raise AuthenticationError when no session comes back."""
        with (
            GeotabClient(api_config) as client,
            patch.object(
                client._http_client,
                'request',
                return_value=make_response({'result': {'path': 'ThisServer'}}),
            ),
            pytest.raises(AuthenticationError),
        ):
            client.authenticate()


class TestGeotabClientCalls:
    """Test call(), get() and multi_call()."""

    def test_call_injects_session_credentials(
        self,
        api_config: ApiConfig,
        make_response: Callable[..., Mock],
        auth_result: dict[str, Any],
    ) -> None:
        """Should authenticate lazily and attach the session to the call."""
        with (
            GeotabClient(api_config) as client,
            patch.object(
                client._http_client,
                'request',
                side_effect=[
                    make_response(auth_result),
                    make_response({'result': [{'id': 'b1'}]}),
                ],
            ) as mock_request,
        ):
            devices: list[Any] = client.get('Device')

            assert devices == [{'id': 'b1'}]
            assert mock_request.call_count == 2  # noqa: PLR2004

            body: dict[str, Any] = mock_request.call_args.kwargs['json']
            assert body['method'] == 'Get'
            assert body['params']['typeName'] == 'Device'
            assert body['params']['credentials'] == {
                'database': 'demo_db',
                'userName': 'backup@example.com',
                'sessionId': 'session-123',
            }

    def test_expired_session_reauthenticates_once(
        self,
        api_config: ApiConfig,
        make_response: Callable[..., Mock],
        auth_result: dict[str, Any],
    ) -> None:
        """Should re-authenticate and repeat the call after InvalidUserException."""
        with (
            GeotabClient(api_config) as client,
            patch.object(
                client._http_client,
                'request',
                side_effect=[
                    make_response(auth_result),
                    make_response(rpc_error('InvalidUserException')),
                    make_response(auth_result),
                    make_response({'result': [{'id': 'b1'}]}),
                ],
            ) as mock_request,
        ):
            assert client.get('Device') == [{'id': 'b1'}]
            assert mock_request.call_count == 4  # noqa: PLR2004

    def test_second_session_rejection_raises(
        self,
        api_config: ApiConfig,
        make_response: Callable[..., Mock],
        auth_result: dict[str, Any],
    ) -> None:
        """Should raise AuthenticationError if the retried call is rejected too."""
        with (
            GeotabClient(api_config) as client,
            patch.object(
                client._http_client,
                'request',
                side_effect=[
                    make_response(auth_result),
                    make_response(rpc_error('InvalidUserException')),
                    make_response(auth_result),
                    make_response(rpc_error('InvalidUserException')),
                ],
            ),
            pytest.raises(AuthenticationError),
        ):
            client.get('Device')

    def test_multi_call_returns_results_in_order(
        self,
        api_config: ApiConfig,
        make_response: Callable[..., Mock],
        auth_result: dict[str, Any],
    ) -> None:
        """Should send all calls in one ExecuteMultiCall request."""
        calls: list[dict[str, Any]] = [
            {'method': 'Get', 'params': {'typeName': 'DeviceStatusInfo'}},
            {'method': 'Get', 'params': {'typeName': 'StatusData'}},
        ]

        with (
            GeotabClient(api_config) as client,
            patch.object(
                client._http_client,
                'request',
                side_effect=[
                    make_response(auth_result),
                    make_response({'result': [['status'], ['odometer']]}),
                ],
            ) as mock_request,
        ):
            results: list[Any] = client.multi_call(calls)

            assert results == [['status'], ['odometer']]
            body: dict[str, Any] = mock_request.call_args.kwargs['json']
            assert body['method'] == 'ExecuteMultiCall'
            assert body['params']['calls'] == calls

    def test_multi_call_with_no_calls_sends_nothing(
        self,
        api_config: ApiConfig,
    ) -> None:
        """Should return an empty list without touching the network."""
        with (
            GeotabClient(api_config) as client,
            patch.object(client._http_client, 'request') as mock_request,
        ):
            assert client.multi_call([]) == []
            mock_request.assert_not_called()

    def test_get_with_non_list_result_raises(
        self,
        api_config: ApiConfig,
        make_response: Callable[..., Mock],
        auth_result: dict[str, Any],
    ) -> None:
        """Should reject a Get result that is not a list."""
        with (
            GeotabClient(api_config) as client,
            patch.object(
                client._http_client,
                'request',
                side_effect=[make_response(auth_result), make_response({'result': 5})],
            ),
            pytest.raises(InvalidApiOperationError),
        ):
            client.get('Device')


class TestGeotabClientErrorClassification:
    """Test mapping of failures onto the exception hierarchy."""

    @pytest.mark.parametrize(
        ('error_name', 'expected_type'),
        [
            ('OverLimitException', RateLimitError),
            ('DbUnavailableException', TransientAPIError),
            ('ArgumentException', InvalidApiOperationError),
            ('MissingMethodException', InvalidApiOperationError),
        ],
    )
    def test_rpc_error_names(
        self,
        api_config: ApiConfig,
        make_response: Callable[..., Mock],
        auth_result: dict[str, Any],
        error_name: str,
        expected_type: type[APIError],
    ) -> None:
        """Should classify JSON-RPC errors by the inner exception name."""
        with (
            GeotabClient(api_config) as client,
            patch.object(
                client._http_client,
                'request',
                side_effect=[
                    make_response(auth_result),
                    make_response(rpc_error(error_name, 'details here')),
                ],
            ),
        ):
            with pytest.raises(expected_type) as exc_info:
                client.get('Device')

            assert exc_info.value.error_name == error_name
            assert 'details here' in str(exc_info.value)

    def test_rate_limit_is_transient(self) -> None:
        """RateLimitError should be caught by TransientAPIError handlers."""
        assert issubclass(RateLimitError, TransientAPIError)
        assert not issubclass(InvalidApiOperationError, TransientAPIError)
        assert not issubclass(AuthenticationError, TransientAPIError)

    def test_http_429_raises_rate_limit(
        self,
        api_config: ApiConfig,
        make_response: Callable[..., Mock],
    ) -> None:
        """Should raise RateLimitError on HTTP 429."""
        with (
            GeotabClient(api_config) as client,
            patch.object(
                client._http_client,
                'request',
                return_value=make_response(status_code=429),
            ),
        ):
            with pytest.raises(RateLimitError) as exc_info:
                client.authenticate()

            assert exc_info.value.status_code == 429  # noqa: PLR2004

    def test_http_5xx_raises_transient(
        self,
        api_config: ApiConfig,
        make_response: Callable[..., Mock],
    ) -> None:
        """Should raise TransientAPIError on server errors."""
        with (
            GeotabClient(api_config) as client,
            patch.object(
                client._http_client,
                'request',
                return_value=make_response(status_code=503, text='Service Unavailable'),
            ),
            pytest.raises(TransientAPIError),
        ):
            client.authenticate()

    def test_http_4xx_raises_invalid_operation(
        self,
        api_config: ApiConfig,
        make_response: Callable[..., Mock],
    ) -> None:
        """Should raise InvalidApiOperationError on other client errors."""
        with (
            GeotabClient(api_config) as client,
            patch.object(
                client._http_client,
                'request',
                return_value=make_response(status_code=404, text='Not Found'),
            ),
        ):
            with pytest.raises(InvalidApiOperationError) as exc_info:
                client.authenticate()

            assert exc_info.value.status_code == 404  # noqa: PLR2004

    def test_malformed_json_raises_transient(
        self,
        api_config: ApiConfig,
        make_response: Callable[..., Mock],
    ) -> None:
        """Should treat an unparsable body as transient."""
        response: Mock = make_response(text='<html>gateway</html>')
        response.json.side_effect = ValueError('Expecting value')

        with (
            GeotabClient(api_config) as client,
            patch.object(client._http_client, 'request', return_value=response),
            pytest.raises(TransientAPIError),
        ):
            client.authenticate()

    def test_timeout_raises_transient(
        self,
        api_config: ApiConfig,
    ) -> None:
        """Should convert httpx timeouts to TransientAPIError."""
        with (
            GeotabClient(api_config) as client,
            patch.object(
                client._http_client,
                'request',
                side_effect=httpx.ReadTimeout('timed out'),
            ),
            pytest.raises(TransientAPIError, match='timeout'),
        ):
            client.authenticate()

    def test_connection_error_raises_transient(
        self,
        api_config: ApiConfig,
    ) -> None:
        """Should convert connection failures to TransientAPIError."""
        with (
            GeotabClient(api_config) as client,
            patch.object(
                client._http_client,
                'request',
                side_effect=httpx.ConnectError('connection refused'),
            ),
            pytest.raises(TransientAPIError, match='Connection error'),
        ):
            client.authenticate()
