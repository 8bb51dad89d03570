"""
evalguard - Dataset evaluation and content moderation guardrails for agent traces.
"""

__version__ = "0.1.0"
