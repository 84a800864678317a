"""
Onboarding related Pydantic models
"""

from pydantic import BaseModel, Field, field_validator

from models.tenant import SLUG_PATTERN


class OnboardingRequest(BaseModel):
    """Data a provisioned owner submits to finish setting up their account"""
    name: str = Field(..., min_length=1, max_length=255)
    password: str = Field(..., min_length=8, max_length=255)
    organisation_name: str = Field(..., min_length=1, max_length=255)
    slug: str = Field(..., min_length=1, max_length=100, pattern=SLUG_PATTERN)

    @field_validator("slug")
    @classmethod
    def slug_not_reserved(cls, value: str) -> str:
        if value == "www":
            raise ValueError("This subdomain is reserved")
        return value

