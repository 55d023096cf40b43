"""
Utility helpers shared across BlazeODM packages.
"""

from .logging import configure_logging, get_logger, time_call

__all__ = ["configure_logging", "get_logger", "time_call"]
