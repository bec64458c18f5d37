"""
Core module containing configuration and shared utilities.
"""
from srm_swap.core.config import settings

__all__ = ["settings"]
