"""modguard: content-risk moderation and escalation engine.

Scores messaging-platform content, records flags, and drives the escalation
policy that hides content, suspends users, preserves evidence and files
law-enforcement case reports.
"""

__version__ = "0.1.0"
