from .aggregation import aggregate_responses
from .call_layer import ModelCallLayer
from .errors import AllProvidersFailedError, InsufficientProvidersError
from .health import ProviderHealth, ProviderHealthRegistry, get_global_health_registry

__all__ = [
    "AllProvidersFailedError",
    "InsufficientProvidersError",
    "ModelCallLayer",
    "ProviderHealth",
    "ProviderHealthRegistry",
    "aggregate_responses",
    "get_global_health_registry",
]
