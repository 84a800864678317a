"""
Authentication module: password hashing and onboarding payloads
"""

from .models import OnboardingRequest
from .password import get_password_hash, verify_password

__all__ = [
    "OnboardingRequest",
    "get_password_hash",
    "verify_password"
]
