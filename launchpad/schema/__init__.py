"""ORM models registered on the shared declarative base."""

from .budgets import BudgetAlert, TokenBudget, TokenUsage
from .cache import ResponseCacheEntry
from .jobs import Job

__all__ = ["BudgetAlert", "Job", "ResponseCacheEntry", "TokenBudget", "TokenUsage"]
