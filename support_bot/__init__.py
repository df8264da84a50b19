"""
Sonic - Voice Customer Support Assistant

A voice-driven support bot: captures speech, transcribes it, answers with
the help of backend tools (order lookup, account balance), speaks the
answer back and keeps latency analytics for every turn.
"""

__version__ = "1.0.0"
