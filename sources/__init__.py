"""
Source capability contract for federated search providers.
"""

from .base_source import BaseSource

__all__ = ["BaseSource"]
