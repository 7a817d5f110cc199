"""
Prometheus Metrics for Workguard

Exposes metrics for:
- Dispatched errors by category and level
- Debounce coalescing
- Recovery attempts and outcomes
- Component health states and transitions
- Fallback activations
"""

from prometheus_client import (
    Counter, Gauge,
    CollectorRegistry, generate_latest,
    CONTENT_TYPE_LATEST
)

# Create a registry for Workguard metrics
REGISTRY = CollectorRegistry()

# ============================================================================
# Dispatcher Metrics
# ============================================================================

ERRORS_TOTAL = Counter(
    'workguard_errors_total',
    'Total errors submitted to the dispatcher',
    ['category', 'level'],
    registry=REGISTRY
)

ERRORS_COALESCED_TOTAL = Counter(
    'workguard_errors_coalesced_total',
    'Errors absorbed by an already pending debounce window',
    ['category'],
    registry=REGISTRY
)

ERRORS_PROCESSED_TOTAL = Counter(
    'workguard_errors_processed_total',
    'Errors processed after their debounce window closed',
    ['category'],
    registry=REGISTRY
)

NOTIFICATIONS_TOTAL = Counter(
    'workguard_notifications_total',
    'User notifications emitted',
    ['severity'],
    registry=REGISTRY
)

# ============================================================================
# Recovery Metrics
# ============================================================================

RECOVERY_ATTEMPTS_TOTAL = Counter(
    'workguard_recovery_attempts_total',
    'Recovery attempts by category and outcome',
    ['category', 'outcome'],  # recovered, failed, exhausted
    registry=REGISTRY
)

# ============================================================================
# Component Health Metrics
# ============================================================================

COMPONENT_STATUS = Gauge(
    'workguard_component_status',
    'Component status (0=NORMAL, 1=DEGRADED, 2=ERROR, 3=DISABLED)',
    ['component_name'],
    registry=REGISTRY
)

COMPONENT_TRANSITIONS_TOTAL = Counter(
    'workguard_component_transitions_total',
    'Component status transitions',
    ['component_name', 'to_status'],
    registry=REGISTRY
)

FALLBACK_ACTIVATIONS_TOTAL = Counter(
    'workguard_fallback_activations_total',
    'Times a fallback produced the result for a component',
    ['component_name'],
    registry=REGISTRY
)

PROVIDER_STATUS = Gauge(
    'workguard_provider_status',
    'Provider status (0=NORMAL, 1=DEGRADED, 2=ERROR, 3=DISABLED)',
    ['provider_type', 'component_name'],
    registry=REGISTRY
)

STATUS_VALUES = {"normal": 0, "degraded": 1, "error": 2, "disabled": 3}

# ============================================================================
# Helper Functions
# ============================================================================

def track_component_status(component: str, status: str) -> None:
    """Record a component's current status on the gauge."""
    COMPONENT_STATUS.labels(component_name=component).set(STATUS_VALUES.get(status, 0))


def track_provider_status(provider_type: str, component: str, status: str) -> None:
    """Record a provider's current status on the gauge."""
    PROVIDER_STATUS.labels(
        provider_type=provider_type, component_name=component
    ).set(STATUS_VALUES.get(status, 0))


def get_metrics_text() -> str:
    """Get all metrics in Prometheus text format"""
    return generate_latest(REGISTRY).decode('utf-8')


def get_metrics_content_type() -> str:
    """Get content type for Prometheus metrics"""
    return CONTENT_TYPE_LATEST
