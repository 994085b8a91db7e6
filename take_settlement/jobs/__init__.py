"""
Background Jobs for take settlement.

This module contains scheduled jobs:
- pack_status_cron: Opens and closes packs on schedule
"""

from .pack_status_cron import run_pack_status_job

__all__ = ["run_pack_status_job"]
