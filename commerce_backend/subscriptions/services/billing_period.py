"""
Billing period arithmetic.

One period is one calendar month, anchored on the day-of-month the
subscription started and clamped to the target month's length:

    Jan 31 -> Feb 28 (or 29) -> Mar 31 -> Apr 30
"""

from __future__ import annotations

from datetime import datetime

from dateutil.relativedelta import relativedelta


def add_billing_period(value: datetime, *, anchor_day: int | None = None) -> datetime:
    # relativedelta clamps an absolute day to the length of the target month.
    return value + relativedelta(months=1, day=int(anchor_day or value.day))


def next_billing_after(started_at: datetime) -> datetime:
    return add_billing_period(started_at, anchor_day=started_at.day)
