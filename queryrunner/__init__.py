"""
Saved search change tracking for the query runner.

This package keeps an in-memory copy of every saved search configured on the
server and notifies subscribers over email and Slack when saved searches are
created, updated or deleted.
"""

__version__ = "0.1.0"
