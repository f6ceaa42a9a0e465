"""Clinical intake orchestration core.

Session-scoped extraction and decision orchestration for multi-turn
clinician conversations.
"""

__version__ = "0.1.0"
