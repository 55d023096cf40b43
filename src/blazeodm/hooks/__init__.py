"""
Lifecycle hooks registry for BlazeODM documents.
"""

from . import events
from .dispatcher import HookDispatcher, hooks

__all__ = ["HookDispatcher", "events", "hooks"]
