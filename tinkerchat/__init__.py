"""
tinkerchat - token-budgeted conversation turns against streaming LLM backends.

This package assembles bounded prompts from persisted conversation history,
streams completions from OpenAI-compatible providers, and records each
exchange so later turns can build on it.
"""

__version__ = "0.1.0"
