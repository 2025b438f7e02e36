"""
planloop - Autonomous plan execution for coding agents.

Drives an external coding agent through a resumable roadmap:
- Phases and plans stored as JSON under .planning/
- Static plan verification before anything runs
- One plan per agent invocation, completion detected from the event stream
- Observations from each run cascaded into the plans that follow
"""

__version__ = "0.1.0"
