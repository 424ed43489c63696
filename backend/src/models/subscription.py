"""Subscription tiers, service types and quota buckets"""

from enum import Enum
from typing import Optional


class SubscriptionTier(str, Enum):
    """Subscription tiers, ordered from least to most privileged"""
    FREE = "free"
    STARTER = "starter"
    BASIC = "basic"
    PREMIUM = "premium"
    PRO = "pro"
    ENTERPRISE = "enterprise"

    @property
    def rank(self) -> int:
        return _TIER_RANK[self]

    @classmethod
    def parse(cls, value: Optional[str]) -> "SubscriptionTier":
        """Normalise a raw tier string, falling back to FREE for unknown values"""
        if isinstance(value, cls):
            return value
        if not value:
            return cls.FREE
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return cls.FREE

    def __lt__(self, other):
        if not isinstance(other, SubscriptionTier):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other):
        if not isinstance(other, SubscriptionTier):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other):
        if not isinstance(other, SubscriptionTier):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other):
        if not isinstance(other, SubscriptionTier):
            return NotImplemented
        return self.rank >= other.rank


_TIER_RANK = {
    SubscriptionTier.FREE: 1,
    SubscriptionTier.STARTER: 2,
    SubscriptionTier.BASIC: 3,
    SubscriptionTier.PREMIUM: 4,
    SubscriptionTier.PRO: 5,
    SubscriptionTier.ENTERPRISE: 6,
}


class ServiceType(str, Enum):
    """Product features that issue AI requests"""
    LESSON_GENERATION = "lesson_generation"
    HOMEWORK_HELP = "homework_help"
    GRADING_ASSISTANCE = "grading_assistance"
    GENERAL = "general"
    DASH_CONVERSATION = "dash_conversation"
    CONVERSATION = "conversation"
    EXAM_GENERATION = "exam_generation"
    EXPLANATION = "explanation"
    CHAT_MESSAGE = "chat_message"

    @classmethod
    def parse(cls, value: Optional[str]) -> "ServiceType":
        """Unknown service types are treated as a Dash conversation"""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return cls.DASH_CONVERSATION


class QuotaPeriod(str, Enum):
    """Reset period of a quota counter"""
    DAY = "day"
    MONTH = "month"

    @property
    def seconds(self) -> int:
        # A month is a rolling 30 day window
        return 86400 if self is QuotaPeriod.DAY else 30 * 86400


class QuotaBucket(str, Enum):
    """Counter that a service type draws from"""
    AI_REQUESTS = "ai_requests"
    EXAMS = "exams"
    EXPLANATIONS = "explanations"
    CHAT_MESSAGES = "chat_messages"


SERVICE_BUCKETS = {
    ServiceType.EXAM_GENERATION: QuotaBucket.EXAMS,
    ServiceType.EXPLANATION: QuotaBucket.EXPLANATIONS,
    ServiceType.CHAT_MESSAGE: QuotaBucket.CHAT_MESSAGES,
    ServiceType.DASH_CONVERSATION: QuotaBucket.CHAT_MESSAGES,
    ServiceType.CONVERSATION: QuotaBucket.CHAT_MESSAGES,
    ServiceType.HOMEWORK_HELP: QuotaBucket.CHAT_MESSAGES,
}


def bucket_for(service_type: ServiceType) -> QuotaBucket:
    """Map a service type onto its quota bucket"""
    return SERVICE_BUCKETS.get(service_type, QuotaBucket.AI_REQUESTS)


class ProviderName(str, Enum):
    """Closed set of upstream LLM vendors"""
    ANTHROPIC = "anthropic"
    OPENAI = "openai"
    GLM = "glm"
