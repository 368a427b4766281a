"""datapoint_gateway: admission, authorization and resolution in front of a key-value table.

Every request is admitted by prioritized rules, authenticated under the
governing auth mode, then mapped onto one table operation.  Successful
creates fan out to live subscribers.
"""

from datapoint_gateway.context import Credential, RequestContext
from datapoint_gateway.entity import DataPoint, DateRange
from datapoint_gateway.exceptions import (
    AdmissionBlockedError,
    AlreadyExistsError,
    ConditionalCheckFailedError,
    ConfigError,
    GatewayError,
    InvalidArgumentError,
    NotFoundError,
    RuleConfigError,
    StoreError,
    StoreUnavailableError,
    UnauthenticatedError,
    UnauthorizedError,
)
from datapoint_gateway.gateway import DataPointGateway
from datapoint_gateway.keys import CompositeStringKey, DirectKey, KeyStrategy, PhysicalKey
from datapoint_gateway.result import Action, Decision

__all__ = [
    "Action",
    "AdmissionBlockedError",
    "AlreadyExistsError",
    "CompositeStringKey",
    "ConditionalCheckFailedError",
    "ConfigError",
    "Credential",
    "DataPoint",
    "DataPointGateway",
    "DateRange",
    "Decision",
    "DirectKey",
    "GatewayError",
    "InvalidArgumentError",
    "KeyStrategy",
    "NotFoundError",
    "PhysicalKey",
    "RequestContext",
    "RuleConfigError",
    "StoreError",
    "StoreUnavailableError",
    "UnauthenticatedError",
    "UnauthorizedError",
]
