"""
Deterministic synthetic feature rows for offline seeding.

Row ``i`` (1-based) of ``size``:
  ticker         ``KRX:{i:06d}``
  trading_value  ``(size - i + 1) * 1e8``  (strictly decreasing)
  features       ``ret_1d``, ``mom_5d``, ``vol_20d``, ``value_score``
"""

from __future__ import annotations

from datetime import date

from tootoo.models.features import FeatureRow

STUB_SIZE_MIN = 1
STUB_SIZE_MAX = 5000


def stub_feature_rows(as_of_date: date, size: int = 500) -> list[FeatureRow]:
    """Build ``size`` synthetic rows for ``as_of_date``.

    Raises:
        ValueError: ``size`` outside [1, 5000].
    """
    if not STUB_SIZE_MIN <= size <= STUB_SIZE_MAX:
        raise ValueError(f"stub size must be in [{STUB_SIZE_MIN}, {STUB_SIZE_MAX}], got {size}.")

    base = float(as_of_date.toordinal() % 10_000)
    rows = []
    for i in range(1, size + 1):
        rows.append(
            FeatureRow(
                as_of_date=as_of_date,
                ticker=f"KRX:{i:06d}",
                name=f"Stub {i:06d}",
                trading_value=(size - i + 1) * 1.0e8,
                features={
                    "ret_1d": ((i % 200) - 100) / 1000.0,
                    "mom_5d": (base + i) / 1000.0,
                    "vol_20d": (i % 50) / 100.0,
                    "value_score": (size - i + 1) / size,
                },
            )
        )
    return rows
