"""Shared error code constants.

Codes are stable machine-readable identifiers. The HTTP layer lowercases them
for the ``error`` field of response bodies.
"""

# Validation
VALIDATION_ERROR = "VALIDATION_ERROR"
INVALID_ARGUMENT = "INVALID_ARGUMENT"
MISSING_WALLET = "MISSING_WALLET"
PAYLOAD_TOO_LARGE = "PAYLOAD_TOO_LARGE"

# Not found
NOT_FOUND = "NOT_FOUND"

# Conflict
CONFLICT = "CONFLICT"
ALREADY_EXISTS = "ALREADY_EXISTS"

# Dependency / external system
DEPENDENCY_FAILURE = "DEPENDENCY_FAILURE"
DEPENDENCY_UNAVAILABLE = "DEPENDENCY_UNAVAILABLE"
DEPENDENCY_TIMEOUT = "DEPENDENCY_TIMEOUT"

# Internal
INTERNAL_ERROR = "INTERNAL_ERROR"
UNEXPECTED_EXCEPTION = "UNEXPECTED_EXCEPTION"
