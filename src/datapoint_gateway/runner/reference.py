# Copyright (c) 2024 OpenMined
# SPDX-License-Identifier: Apache-2.0
"""The reference deployment: flood protection plus an IP-restricted API key.

* ``FloodProtection`` (priority 1) blocks any source IP that sends more
  than 1000 requests in a 5 minute window.
* ``RestrictAPIKey`` (priority 2) blocks requests that present the API key
  from outside the allowed address set.
* Everything else is allowed.  The identity pool is the default auth mode;
  the API key is an opt-in override that expires seven days after the
  anchor day.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from datapoint_gateway.auth.modes import api_key_expiry

from .schema import GatewayConfig, VerifierConfigSchema

FLOOD_LIMIT = 1000
ALLOWED_IPS_SET = "ApiKeyAllowedIPs"
DEFAULT_ALLOWED_IPS = ("146.198.93.180/32",)


def flood_protection_rule(limit: int = FLOOD_LIMIT) -> dict[str, Any]:
    return {
        "name": "FloodProtection",
        "priority": 1,
        "action": {"block": {}},
        "statement": {"rateBasedStatement": {"limit": limit, "aggregateKeyType": "IP"}},
    }


def restrict_api_key_rule(api_key: str, ip_set: str = ALLOWED_IPS_SET) -> dict[str, Any]:
    """Block the API key unless the caller is in *ip_set*."""
    return {
        "name": "RestrictAPIKey",
        "priority": 2,
        "action": {"block": {}},
        "statement": {
            "andStatement": {
                "statements": [
                    {
                        "byteMatchStatement": {
                            "fieldToMatch": {"singleHeader": {"name": "x-api-key"}},
                            "positionalConstraint": "EXACTLY",
                            "searchString": api_key,
                            "textTransformations": [{"priority": 0, "type": "LOWERCASE"}],
                        }
                    },
                    {
                        "notStatement": {
                            "statement": {"ipSetReferenceStatement": {"name": ip_set}}
                        }
                    },
                ]
            }
        },
    }


def reference_config(
    api_key: str,
    *,
    allowed_ips: list[str] | tuple[str, ...] = DEFAULT_ALLOWED_IPS,
    anchor: datetime | None = None,
    user_pool_ref: str = "default-user-pool",
    verifier: VerifierConfigSchema | None = None,
) -> GatewayConfig:
    """Build the reference :class:`GatewayConfig`.

    Args:
        api_key: The API key value.  Both the admission rule and the
            ``API_KEY`` mode check it.
        allowed_ips: Addresses allowed to use the API key.
        anchor: Day the key is issued.  Defaults to today (UTC).
        user_pool_ref: Identity pool reference for the default mode.
        verifier: Verifier for the identity pool.  When omitted, pass one
            to :class:`GatewayFactory` under ``user_pool_ref``.
    """
    return GatewayConfig.model_validate(
        {
            "auth_modes": [
                {
                    "type": "USER_POOL",
                    "is_default": True,
                    "user_pool_ref": user_pool_ref,
                    "verifier": verifier,
                },
                {
                    "type": "API_KEY",
                    "name": "ApiKey1",
                    "key": api_key,
                    "description": "Restricted development access",
                    "expires_at": api_key_expiry(anchor),
                },
            ],
            "acl": {
                "defaultAction": {"allow": {}},
                "ipSets": [
                    {
                        "name": ALLOWED_IPS_SET,
                        "addresses": list(allowed_ips),
                        "ipAddressVersion": "IPV4",
                    }
                ],
                "rules": [flood_protection_rule(), restrict_api_key_rule(api_key)],
            },
        }
    )
