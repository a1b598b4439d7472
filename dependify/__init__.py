"""
Dependify orchestration core.

Turns a free-text business request plus tenant context into a final answer by
running a bounded tool-calling conversation against a model backend.
"""

__version__ = "0.1.0"
