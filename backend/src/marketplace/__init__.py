"""Referral attribution and reward engine for the property marketplace."""

__version__ = "1.0.0"
