"""Referral attribution and reward engine.

- Code registry: one shareable code per user
- Attribution graph: one immutable referrer edge per user, depth-capped
- Reward issuance: idempotent per (referrer, referred, level, event)
- Share tracking: click, capture and paid touch events per code
- Dashboard and milestone bonuses for referrers
"""

from marketplace.referral.codes import CodeRegistry, CodeResult, code_registry
from marketplace.referral.dashboard import DashboardSnapshot, ReferralDashboardService, dashboard_service
from marketplace.referral.errors import (
    CodeGenerationExhausted,
    CodeNotFound,
    InvalidEventError,
    MilestoneNotFound,
    ReferralError,
)
from marketplace.referral.graph import Ancestor, AttributionGraph, CaptureResult, attribution_graph
from marketplace.referral.milestones import ClaimResult, MilestoneService, MilestoneStatus, milestone_service
from marketplace.referral.models import (
    ReferralCode,
    ReferralEdge,
    ReferralMilestone,
    ReferralMilestoneClaim,
    ReferralReward,
    ReferralTouchEvent,
)
from marketplace.referral.rewards import (
    IssueResult,
    RewardEventType,
    RewardIssuanceEngine,
    SkipReason,
    SkipRecord,
    reward_engine,
)
from marketplace.referral.tracking import ReferralFunnel, ShareTracker, TouchEventType, share_tracker

__all__ = [
    "Ancestor",
    "AttributionGraph",
    "CaptureResult",
    "ClaimResult",
    "CodeGenerationExhausted",
    "CodeNotFound",
    "CodeRegistry",
    "CodeResult",
    "DashboardSnapshot",
    "InvalidEventError",
    "IssueResult",
    "MilestoneNotFound",
    "MilestoneService",
    "MilestoneStatus",
    "ReferralCode",
    "ReferralDashboardService",
    "ReferralEdge",
    "ReferralError",
    "ReferralMilestone",
    "ReferralMilestoneClaim",
    "ReferralFunnel",
    "ReferralReward",
    "ReferralTouchEvent",
    "RewardEventType",
    "RewardIssuanceEngine",
    "ShareTracker",
    "SkipReason",
    "SkipRecord",
    "TouchEventType",
    "attribution_graph",
    "code_registry",
    "dashboard_service",
    "milestone_service",
    "reward_engine",
    "share_tracker",
]
