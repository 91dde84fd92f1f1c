from .logging import ProviderLogger, RunLogger, StructuredLogger

__all__ = ["ProviderLogger", "RunLogger", "StructuredLogger"]
