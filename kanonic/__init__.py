"""
kanonic: typed, validated HTTP endpoint calls.

Declare endpoints once, call them as async functions that return `Ok`/`Err`
results instead of raising. Validation is done with pydantic, transport with
httpx.
"""

from __future__ import annotations

from .client import ApiNode, ApiService, EndpointFunction, Kanonic, create_api, create_endpoints
from .clients.http import ClientConfig, HTTPClient
from .clients.pipeline import Plugin, RequestContext, RequestInit
from .clients.retry import compute_delay, run_with_retry
from .clients.sse import EventStream, SSEDecoder, StreamState
from .exceptions import (
    ApiError,
    ApiErrors,
    ErrorKind,
    FetchError,
    InputValidationError,
    KanonicError,
    OutputValidationError,
    ParseError,
    RetriableError,
    is_retriable,
)
from .plugins import LoggingPlugin, TimingPlugin
from .policies import Policies, ValidationPolicy
from .presets import validate_all_errors, validate_client_errors
from .result import Err, Ok, Result
from .schema import Schema, Validation
from .types import (
    Auth,
    Backoff,
    BasicAuth,
    BearerAuth,
    CallOptions,
    Endpoint,
    EndpointTree,
    Method,
    RequestOptions,
    RetryPolicy,
)

__version__ = "0.1.0"

__all__ = [
    # Client
    "Kanonic",
    "ApiService",
    "ApiNode",
    "EndpointFunction",
    "create_api",
    "create_endpoints",
    "ClientConfig",
    "HTTPClient",
    # Declarations
    "Endpoint",
    "EndpointTree",
    "Method",
    "Schema",
    "Validation",
    "CallOptions",
    "RequestOptions",
    "RetryPolicy",
    "Backoff",
    "Auth",
    "BearerAuth",
    "BasicAuth",
    "Policies",
    "ValidationPolicy",
    # Results and errors
    "Result",
    "Ok",
    "Err",
    "KanonicError",
    "ErrorKind",
    "ApiError",
    "ApiErrors",
    "FetchError",
    "InputValidationError",
    "OutputValidationError",
    "ParseError",
    "RetriableError",
    "is_retriable",
    # Plugins
    "Plugin",
    "RequestContext",
    "RequestInit",
    "LoggingPlugin",
    "TimingPlugin",
    # Retry / streaming
    "compute_delay",
    "run_with_retry",
    "EventStream",
    "SSEDecoder",
    "StreamState",
    # Presets
    "validate_client_errors",
    "validate_all_errors",
]
