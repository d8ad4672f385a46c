"""Utility modules for custodysign."""

from custodysign.utils.polling import PollPolicy, PollTimeoutError, poll, run_with_deadline

__all__ = ["PollPolicy", "PollTimeoutError", "poll", "run_with_deadline"]
