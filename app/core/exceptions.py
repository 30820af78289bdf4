"""Typed application errors rendered by app.core.error_handlers"""
from typing import Optional


class AppError(Exception):
    status_code: int = 500
    code: str = "INTERNAL_SERVER_ERROR"

    def __init__(self, message: str, code: Optional[str] = None, field: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.field = field


class ValidationError(AppError):
    status_code = 400
    code = "INVALID_INPUT"


class UnknownVehicleTypeError(AppError):
    status_code = 400
    code = "UNKNOWN_VEHICLE_TYPE"

    def __init__(self, vehicle_type: str):
        super().__init__(
            f"No pricing multiplier configured for vehicle type '{vehicle_type}'",
            field="vehicle_type",
        )
        self.vehicle_type = vehicle_type


class NotFoundError(AppError):
    status_code = 404
    code = "NOT_FOUND"


class ActiveConfigMissingError(NotFoundError):
    # An active config must always exist; its absence is a deployment fault.
    status_code = 500
    code = "PRICING_CONFIG_MISSING"

    def __init__(self):
        super().__init__("No active pricing configuration found")


class ConcurrentUpdateError(AppError):
    status_code = 409
    code = "CONCURRENT_UPDATE"
