"""
Agent Supervisor - Spawns, supervises and evaluates AI coding-agent subprocesses.

This package provides the agent session orchestrator, the two-tier QA runner
built on top of it, and a heartbeat-based health registry for long-running
components.
"""

__version__ = "0.1.0"
