"""Canonical structured logging field names."""

TIMESTAMP = "timestamp"
LEVEL = "level"
LOGGER = "logger"
MESSAGE = "message"
EVENT = "event"

# Envelope/correlation fields.
TRACE_ID = "trace_id"
ENVELOPE_ID = "envelope_id"
PRINCIPAL = "principal"
REQUEST_ID = "request_id"

# Public API invocation fields.
COMPONENT_ID = "component_id"
API_NAME = "api_name"
PUBLIC_API_INVOCATION_EVENT = "public_api_invocation"
PUBLIC_API_COMPLETION_EVENT = "public_api_completion"
SUCCESS = "success"
DURATION_MS = "duration_ms"
ERRORS = "errors"

# HTTP access fields.
HTTP_REQUEST_EVENT = "http_request"
METHOD = "method"
PATH = "path"
STATUS_CODE = "status_code"

# Sweeper fields.
SWEEP_CYCLE_EVENT = "sweep_cycle"
LEASE_ID = "lease_id"
PIECE_ID = "piece_id"

# Common service-level fields.
SERVICE = "service"
ENVIRONMENT = "environment"
