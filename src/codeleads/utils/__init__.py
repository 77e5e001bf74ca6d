"""
Shared utilities (logging).
"""
from src.codeleads.utils.logger import get_logger, setup_logging, bound_context

__all__ = ["get_logger", "setup_logging", "bound_context"]
