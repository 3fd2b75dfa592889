from __future__ import annotations

from enum import StrEnum


class Role(StrEnum):
    SUPER_ADMIN = "SUPER_ADMIN"
    MANAGER = "MANAGER"
    EMPLOYEE = "EMPLOYEE"


class DealStage(StrEnum):
    QUALIFICATION = "QUALIFICATION"
    NEEDS_ANALYSIS = "NEEDS_ANALYSIS"
    PROPOSAL = "PROPOSAL"
    NEGOTIATION = "NEGOTIATION"
    CLOSED_WON = "CLOSED_WON"
    CLOSED_LOST = "CLOSED_LOST"


class LeadStatus(StrEnum):
    UNTOUCHED = "UNTOUCHED"
    INTERESTED = "INTERESTED"
    NOT_INTERESTED = "NOT_INTERESTED"
    COLD_LEAD = "COLD_LEAD"
    CLOSED_LEAD = "CLOSED_LEAD"
    WON = "WON"
    LOST = "LOST"


class LeadSource(StrEnum):
    WEBSITE = "WEBSITE"
    REFERRAL = "REFERRAL"
    COLD_CALL = "COLD_CALL"
    SOCIAL_MEDIA = "SOCIAL_MEDIA"
    OTHER = "OTHER"


class ActivityType(StrEnum):
    CALL = "CALL"
    EMAIL = "EMAIL"
    MEETING = "MEETING"
    DEMO = "DEMO"
    TASK = "TASK"
    FOLLOW_UP = "FOLLOW_UP"


class ActivityStatus(StrEnum):
    SCHEDULED = "SCHEDULED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    OVERDUE = "OVERDUE"


class ReferenceType(StrEnum):
    INTERNAL = "INTERNAL"
    EXTERNAL = "EXTERNAL"


class GstType(StrEnum):
    WITH_GST = "WITH_GST"
    WITHOUT_GST = "WITHOUT_GST"


class PaymentMethod(StrEnum):
    CASH = "CASH"
    BANK_TRANSFER = "BANK_TRANSFER"
    CHEQUE = "CHEQUE"
    UPI = "UPI"
    CARD = "CARD"
    OTHER = "OTHER"


CLOSED_LEAD_STATUSES = frozenset({LeadStatus.CLOSED_LEAD, LeadStatus.WON})
CONVERTED_LEAD_STATUSES = frozenset({LeadStatus.WON})
PENDING_ACTIVITY_STATUSES = frozenset({ActivityStatus.SCHEDULED, ActivityStatus.OVERDUE})
