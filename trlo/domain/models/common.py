"""Defines common Value Objects used across different domain contexts.

These objects represent simple values like operation identifiers, field
paths and payloads, keeping signatures readable across layers.
"""

from typing import NewType, Tuple, Any, Dict, TypedDict, Optional

# === Batch Context ===
OperationId = NewType("OperationId", str)          # Unique id of an operation within a batch
OperationType = NewType("OperationType", str)      # Registered type, e.g. 'create-card'
FieldPath = NewType("FieldPath", Tuple[str, ...])  # Path into a response payload, e.g. ('labels', '0', 'id')
ResponsePayload = NewType("ResponsePayload", Dict[str, Any])  # Decoded body returned by the remote API
ResolvedParams = NewType("ResolvedParams", Dict[str, Any])    # Params with every Reference substituted

# === Credentials ===
ApiKey = NewType("ApiKey", str)
ApiToken = NewType("ApiToken", str)

# --- Structured Data ---
class BackoffPolicy(TypedDict):
    """Value Object representing retry backoff configuration."""
    max_retries: int
    initial_delay: float
    factor: float
    max_delay: float
    jitter: float

class RateLimitPolicy(TypedDict):
    """Value Object representing the token bucket configuration."""
    capacity: int
    refill_rate: float

class ErrorDetails(TypedDict, total=False):
    """Optional structured details attached to an error descriptor."""
    field: Optional[str]
    status_code: Optional[int]
    attempts: Optional[int]
    retry_after: Optional[float]
    members: Optional[list]
