"""
Billing-specific exceptions
"""


class BillingException(Exception):
    """Base exception for billing operations"""

    def __init__(self, message: str, code: str = None, details: dict = None):
        super().__init__(message)
        self.message = message
        self.code = code or "BILLING_ERROR"
        self.details = details or {}


class ExternalBillingUnavailable(BillingException):
    """Raised when a Stripe API call fails (network, auth, rate limit or API error)"""

    def __init__(self, message: str, stripe_error_code: str = None,
                 stripe_error_type: str = None, **kwargs):
        super().__init__(message, code="EXTERNAL_BILLING_UNAVAILABLE", **kwargs)
        self.stripe_error_code = stripe_error_code
        self.stripe_error_type = stripe_error_type


class UnknownExternalReference(BillingException):
    """Raised when an event references a Stripe object this system does not track"""

    def __init__(self, reference: str, kind: str = "subscription", **kwargs):
        message = f"Unknown {kind} reference: {reference}"
        super().__init__(message, code="UNKNOWN_EXTERNAL_REFERENCE", **kwargs)
        self.reference = reference
        self.kind = kind


class DuplicateProvisioning(BillingException):
    """Raised when a checkout would provision a second account for an existing email"""

    def __init__(self, email: str, session_id: str = None, **kwargs):
        super().__init__(f"Account already exists for {email}", code="DUPLICATE_PROVISIONING", **kwargs)
        self.email = email
        self.session_id = session_id


class WebhookVerificationException(BillingException):
    """Raised when webhook verification fails"""

    def __init__(self, message: str = "Webhook verification failed", **kwargs):
        super().__init__(message, code="WEBHOOK_VERIFICATION_FAILED", **kwargs)


class InvalidModuleSelection(BillingException):
    """Raised when a checkout names modules that are unknown or inactive"""

    def __init__(self, slugs: list, **kwargs):
        message = f"Invalid module selection: {', '.join(slugs)}"
        super().__init__(message, code="INVALID_MODULE_SELECTION", **kwargs)
        self.slugs = slugs
