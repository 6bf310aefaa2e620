from decimal import ROUND_HALF_UP, Decimal
from typing import Annotated

from pydantic import BaseModel, ConfigDict, PlainSerializer
from pydantic.alias_generators import to_camel


CENTS = Decimal("0.01")

# Decimals travel as JSON numbers, not strings
Money = Annotated[Decimal, PlainSerializer(float, return_type=float, when_used="json")]


def to_money(value) -> Decimal:
    return Decimal(str(value)).quantize(CENTS, rounding=ROUND_HALF_UP)


class ApiModel(BaseModel):
    """Base for models exposed over HTTP: camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )
