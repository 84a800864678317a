"""
Core tenancy package: configuration, tenancy context and isolation,
memberships, onboarding and domain events.
"""
