from http import HTTPStatus
from typing import Any, Optional


class ShippingError(Exception):
    """Base error for waybill, shipment, pickup and tracking operations.

    ``remark`` carries the carrier's own wording, unmodified, so operators can
    diagnose a rejection. ``response`` keeps the decoded carrier body if any.
    """

    status_code = HTTPStatus.INTERNAL_SERVER_ERROR
    retryable = False

    def __init__(
        self, message: str, remark: Optional[str] = None, response: Any = None
    ):
        super().__init__(message)
        self.message = message
        self.remark = remark
        self.response = response

    def to_dict(self):
        body = {"success": False, "error": self.message}
        if self.remark:
            body["remark"] = self.remark
        return body


class InvalidArgument(ShippingError):
    status_code = HTTPStatus.BAD_REQUEST


class NotFound(ShippingError):
    status_code = HTTPStatus.NOT_FOUND


class AlreadyExists(ShippingError):
    status_code = HTTPStatus.CONFLICT


class ConfigurationError(ShippingError):
    status_code = HTTPStatus.SERVICE_UNAVAILABLE


class CarrierError(ShippingError):
    status_code = HTTPStatus.BAD_GATEWAY


class AuthError(CarrierError):
    status_code = HTTPStatus.UNAUTHORIZED


class CarrierValidationError(CarrierError):
    status_code = HTTPStatus.BAD_REQUEST


class CarrierDecodeError(CarrierError):
    status_code = HTTPStatus.BAD_GATEWAY


class RateLimited(CarrierError):
    status_code = HTTPStatus.TOO_MANY_REQUESTS
    retryable = True


class Transient(CarrierError):
    status_code = HTTPStatus.SERVICE_UNAVAILABLE
    retryable = True


class DeadlineExceeded(CarrierError):
    status_code = HTTPStatus.SERVICE_UNAVAILABLE


class CarrierDegraded(CarrierError):
    """Recognised soft failure, e.g. the carrier wallet is below its minimum."""

    status_code = HTTPStatus.PAYMENT_REQUIRED


class CarrierTimeout(Transient):
    pass
