"""
Tool-call execution pipeline for a terminal coding agent: confirmation
policy, the batch scheduler, and the shell execution engine.
"""

__version__ = "0.1.0"
