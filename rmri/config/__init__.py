from .providers import DEFAULT_PROVIDER_ORDER, PROVIDER_SETTINGS, ProviderSettings, get_default_order

__all__ = [
    "DEFAULT_PROVIDER_ORDER",
    "PROVIDER_SETTINGS",
    "ProviderSettings",
    "get_default_order",
]
