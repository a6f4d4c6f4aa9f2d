from __future__ import annotations


class PaymentsError(Exception):
    status_code = 400


class ValidationError(PaymentsError):
    status_code = 400


class InvalidRace(ValidationError):
    def __init__(self, race_key: str | None):
        self.race_key = race_key
        super().__init__(f"Invalid race category: {race_key}")


# Price config lookups fail with the same error.
UnknownRace = InvalidRace


class CouponRejected(ValidationError):
    MESSAGES = {
        "malformed": "Invalid coupon code",
        "not_found": "Invalid coupon code",
        "inactive": "This coupon is no longer active",
        "expired": "This coupon has expired",
        "exhausted": "This coupon has reached its maximum usage limit",
    }

    def __init__(self, reason: str, code: str | None = None):
        self.reason = reason
        self.code = code
        super().__init__(self.MESSAGES.get(reason, "Coupon rejected"))


class CapacityError(CouponRejected):
    status_code = 409

    def __init__(self, code: str | None = None):
        super().__init__("exhausted", code)


class AuthenticityError(PaymentsError):
    status_code = 400


class InvalidSignature(AuthenticityError):
    pass


class NotFoundError(PaymentsError):
    status_code = 404


class GatewayError(PaymentsError):
    status_code = 502
