from datetime import date, datetime
from typing import Tuple, Union

import pandas as pd


def date_to_iso_week(dt: date) -> Tuple[int, int]:
    iso_calendar = dt.isocalendar()
    return (iso_calendar.year, iso_calendar.week)


def week_label(dt: Union[str, date, datetime, pd.Timestamp]) -> str:
    """Human-readable ISO week label, e.g. ``2021-W07``."""
    year, week = date_to_iso_week(pd.Timestamp(dt).date())
    return f"{year}-W{week:02d}"


def time_steps(dates: pd.Series) -> pd.DataFrame:
    """Distinct sorted dates with their 1-based ``time_step`` index."""
    uniq = pd.Series(pd.unique(dates.dropna())).sort_values(ignore_index=True)
    return pd.DataFrame({dates.name or "date": uniq, "time_step": range(1, len(uniq) + 1)})
