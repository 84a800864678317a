"""
Background jobs (ARQ) and job dispatch.
"""

from .dispatch import JobDispatcher

__all__ = ["JobDispatcher"]
