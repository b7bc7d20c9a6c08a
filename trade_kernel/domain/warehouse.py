"""
Warehouse stock domain types and the filter split arithmetic.

A filter pass takes one purchase's stock awaiting filtering and splits it
into a clean lot (ready to ship, carrying the whole cost) and an optional
non-clean lot at zero cost.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from trade_kernel.exceptions import FilterOutputExceedsInputError, InvalidQuantityError


class WarehouseCode(str, Enum):
    FIRST = "FIRST"
    FINAL = "FINAL"


class StockStatus(str, Enum):
    AWAITING_DECISION = "AWAITING_DECISION"
    AWAITING_FILTER = "AWAITING_FILTER"
    READY_TO_SHIP = "READY_TO_SHIP"
    NON_CLEAN = "NON_CLEAN"


@dataclass(frozen=True)
class FilterSplit:
    input_kg: Decimal
    output_clean_kg: Decimal
    output_non_clean_kg: Decimal
    filter_yield: Decimal
    clean_unit_cost_usd: Decimal


def compute_filter_split(
    purchase_id: str,
    input_kg: Decimal,
    output_clean_kg: Decimal,
    output_non_clean_kg: Decimal,
    unit_cost_usd: Decimal,
) -> FilterSplit:
    """
    Validate quantities and move all cost onto the clean output.

    Raises:
        InvalidQuantityError: clean output not positive or non-clean negative.
        FilterOutputExceedsInputError: clean + non-clean > input.
    """
    if output_clean_kg <= 0:
        raise InvalidQuantityError("output_clean_kg", output_clean_kg)
    if output_non_clean_kg < 0:
        raise InvalidQuantityError("output_non_clean_kg", output_non_clean_kg)
    if output_clean_kg + output_non_clean_kg > input_kg:
        raise FilterOutputExceedsInputError(
            purchase_id, input_kg, output_clean_kg, output_non_clean_kg,
        )

    return FilterSplit(
        input_kg=input_kg,
        output_clean_kg=output_clean_kg,
        output_non_clean_kg=output_non_clean_kg,
        filter_yield=(output_clean_kg / input_kg * 100).quantize(Decimal("0.01")),
        clean_unit_cost_usd=(unit_cost_usd * input_kg / output_clean_kg).quantize(
            Decimal("0.000000001")
        ),
    )
