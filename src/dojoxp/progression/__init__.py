"""Progression core: clock, calendar, mastery, streaks, ledger and badges."""
