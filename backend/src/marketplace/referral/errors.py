"""Referral engine exceptions.

Only input errors are exceptions. Policy rejections and idempotent no-ops are
returned as results with a reason code.
"""


class ReferralError(Exception):
    """Base class for referral input errors."""
    pass


class CodeNotFound(ReferralError):
    """Raised when a referral code does not belong to any user."""

    def __init__(self, code: str):
        self.code = code
        super().__init__(f"Unknown referral code: {code}")


class CodeGenerationExhausted(ReferralError):
    """Raised when no free referral code was found within the attempt limit."""

    def __init__(self, user_id: int, attempts: int):
        self.user_id = user_id
        self.attempts = attempts
        super().__init__(f"Could not generate a unique referral code for user {user_id} after {attempts} attempts")


class InvalidEventError(ReferralError):
    """Raised for malformed reward events."""
    pass


class MilestoneNotFound(ReferralError):
    """Raised when a milestone id does not exist."""

    def __init__(self, milestone_id: int):
        self.milestone_id = milestone_id
        super().__init__(f"Milestone {milestone_id} not found")
