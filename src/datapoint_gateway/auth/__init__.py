"""Authorization layering: auth modes, identity verifiers and the resolver."""

from datapoint_gateway.auth.modes import (
    ApiKeyMode,
    AuthMode,
    AuthType,
    Principal,
    UserPoolMode,
    api_key_expiry,
)
from datapoint_gateway.auth.resolver import AuthorizationResolver
from datapoint_gateway.auth.verifiers import HttpTokenVerifier, IdentityVerifier, StaticTokenVerifier

__all__ = [
    "ApiKeyMode",
    "AuthMode",
    "AuthType",
    "AuthorizationResolver",
    "HttpTokenVerifier",
    "IdentityVerifier",
    "Principal",
    "StaticTokenVerifier",
    "UserPoolMode",
    "api_key_expiry",
]
