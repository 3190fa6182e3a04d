"""Durable Log: transactional storage for commits, point versions and intent."""

from chronovec.log.durable_log import DurableLog, FinalizeOutcome

__all__ = ["DurableLog", "FinalizeOutcome"]
