"""
Slack activity summarizer.

Reconstructs a user's Slack activity over a time window into coherent
topics and produces a per-channel narrative report.
"""

__version__ = "0.1.0"
