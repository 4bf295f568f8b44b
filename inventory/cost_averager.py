"""
Weighted average cost (CMP) recomputation.

The average only moves when priced stock comes in.  Consumption never
changes it, and a restock without a declared price is a quantity-only
adjustment that leaves the cost basis alone.
"""
from typing import Iterable, Optional, Tuple


def apply_receipt(
    previous_total_grams: float,
    previous_average_cost: float,
    incoming_grams: float,
    incoming_price_per_gram: Optional[float],
) -> float:
    """
    Return the average cost per gram after receiving *incoming_grams* at
    *incoming_price_per_gram* on top of the previous stock.

    (prev_grams * prev_avg + in_grams * in_price) / (prev_grams + in_grams)
    """
    if incoming_price_per_gram is None or incoming_price_per_gram <= 0:
        return previous_average_cost

    total_grams = previous_total_grams + incoming_grams
    if total_grams == 0:
        return 0.0

    return (
        previous_total_grams * previous_average_cost
        + incoming_grams * incoming_price_per_gram
    ) / total_grams


def apply_receipts(
    previous_total_grams: float,
    previous_average_cost: float,
    receipts: Iterable[Tuple[float, Optional[float]]],
) -> Tuple[float, float]:
    """
    Fold a sequence of (grams, price_per_gram) receipts into the stock.

    Returns (total_grams, average_cost).  Each receipt uses the
    post-increment grams of the previous one as its baseline.
    """
    total, average = previous_total_grams, previous_average_cost
    for grams, price in receipts:
        average = apply_receipt(total, average, grams, price)
        total += grams
    return total, average
