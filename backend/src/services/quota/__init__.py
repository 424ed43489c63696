"""Quota enforcement and usage recording"""

from .quota_accountant import QuotaAccountant
from .usage_recorder import UsageRecorder

__all__ = ["QuotaAccountant", "UsageRecorder"]
