"""Field completeness metrics for a batch of scraped events."""
from typing import Sequence

from processor.models import FillRates, RawEvent


def compute_fill_rates(events: Sequence[RawEvent]) -> FillRates:
    """
    Compute the percentage of events with each quality field populated.

    Args:
        events: Scraped events from one run

    Returns:
        FillRates with integer percentages; all zeros for an empty batch
    """
    if not events:
        return FillRates()

    total = len(events)

    def pct(count: int) -> int:
        return round(count / total * 100)

    return FillRates(
        title=pct(sum(1 for e in events if e.title)),
        location=pct(sum(1 for e in events if e.location)),
        hares=pct(sum(1 for e in events if e.hares)),
        start_time=pct(sum(1 for e in events if e.start_time)),
        run_number=pct(sum(1 for e in events if e.run_number is not None)),
    )
