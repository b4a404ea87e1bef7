"""
Device inventory collaborator: the abstract interface the core talks to
and an in-process implementation.
"""
from .base import BaseInventory
from .memory import InMemoryInventory

__all__ = ["BaseInventory", "InMemoryInventory"]
