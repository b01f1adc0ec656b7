"""
IdeaDrip weekly dispatch.

Decides which subscribers are inside their weekly delivery window (in their
own timezone) and runs generate -> deliver -> record for each of them, one
user's failure never touching another's.

Nothing here imports Prefect; the flow wrapper lives in flows/weekly_ideas_flow.py.
"""

from .aggregator import RunAggregator
from .dispatcher import run_once
from .models import RunSummary, Subscriber, UserResult, UserSchedule, Weekday
from .pipeline import DispatchPipeline
from .window import is_due

__all__ = [
    "DispatchPipeline",
    "RunAggregator",
    "RunSummary",
    "Subscriber",
    "UserResult",
    "UserSchedule",
    "Weekday",
    "is_due",
    "run_once",
]
