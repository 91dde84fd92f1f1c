from .detector import ConvergenceDetector

__all__ = ["ConvergenceDetector"]
