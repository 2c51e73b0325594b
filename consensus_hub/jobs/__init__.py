"""
Background Jobs for ConsensusHub.

This module contains scheduled and background jobs:
- reminder_cron: Deadline closures and scheduled reminder delivery
"""

from .reminder_cron import run_reminder_job, run_scheduled_notifications

__all__ = ["run_reminder_job", "run_scheduled_notifications"]
