"""Quota, cache and retry helpers shared by every outbound integration."""

from __future__ import annotations

from brokerlink.resilience.budget import BudgetStatus, RateBudgetCache, TTLCache
from brokerlink.resilience.retry import ResilientCallExecutor, is_retryable

__all__ = ["BudgetStatus", "RateBudgetCache", "ResilientCallExecutor", "TTLCache", "is_retryable"]
