"""
Exception taxonomy for the routing layer.

Each error carries an ``error_type`` (stable, machine-readable) and the HTTP
status the API layer answers with.
"""
from typing import Optional


class SwitchboardError(Exception):
    error_type = "internal_error"
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class EntitlementDenied(SwitchboardError):
    """The subscription gate rejected the request before any network call."""
    error_type = "entitlement_denied"
    status_code = 403

    def __init__(self, message: str, requires_api_key: bool = False, requires_upgrade: bool = False):
        super().__init__(message)
        self.requires_api_key = requires_api_key
        self.requires_upgrade = requires_upgrade


class ConfigurationError(SwitchboardError):
    """No adapter or no usable key for a request that passed the gate."""
    error_type = "configuration_error"
    status_code = 400


class VendorError(SwitchboardError):
    error_type = "provider_error"
    status_code = 502

    def __init__(self, message: str, provider: Optional[str] = None, upstream_status: Optional[int] = None):
        super().__init__(message)
        self.provider = provider
        self.upstream_status = upstream_status


class ProviderTimeout(VendorError):
    error_type = "timeout"
    status_code = 504


class StreamingError(SwitchboardError):
    error_type = "stream_error"
    status_code = 502


class AuthFlowError(SwitchboardError):
    error_type = "auth_flow_error"
    status_code = 400


class EncryptionUnavailable(SwitchboardError):
    error_type = "encryption_unavailable"
    status_code = 503


class CredentialError(SwitchboardError):
    """Stored ciphertext cannot be decrypted with the configured key."""
    error_type = "credential_error"
    status_code = 500


class ToolParameterError(SwitchboardError, ValueError):
    error_type = "invalid_parameters"
    status_code = 422


class ToolExecutionError(SwitchboardError):
    error_type = "tool_execution_error"
    status_code = 502


class ServiceNotConnected(ToolExecutionError):
    error_type = "service_not_connected"
    status_code = 409
