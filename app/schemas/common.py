from decimal import Decimal
from typing import Annotated, Generic, TypeVar

from pydantic import BaseModel, PlainSerializer

T = TypeVar("T")


def _decimal_to_float(value: Decimal) -> float:
    return float(value)


# Exact Decimal in Python, plain JSON number on the wire.
JsonDecimal = Annotated[Decimal, PlainSerializer(_decimal_to_float, return_type=float, when_used="json")]


class ApiResponse(BaseModel, Generic[T]):
    success: bool = True
    data: T
