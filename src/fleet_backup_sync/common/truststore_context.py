# fleet_backup_sync/common/truststore_context.py
"""
SSL context factory backed by the operating system trust store.

MyGeotab is reached over HTTPS. Behind an intercepting corporate proxy the
proxy's root CA lives in the Windows/macOS certificate store but not in the
bundle httpx ships with, so requests fail with `SSLCertVerificationError`.
Building the context from `truststore` fixes that without turning
verification off.
"""

import ssl
from ssl import SSLContext

__all__: list[str] = ['build_truststore_ssl_context']


def build_truststore_ssl_context() -> SSLContext:
    """
    Create an SSLContext that validates certificates against the OS store.

    Returns:
        SSLContext configured with PROTOCOL_TLS_CLIENT.

    Raises:
        RuntimeError: If truststore is not installed.
    """
    try:
        import truststore  # noqa: PLC0415
    except ImportError as import_error:
        raise RuntimeError(
            'truststore is required when use_truststore=True; '
            'install it with: pip install truststore'
        ) from import_error

    return truststore.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
