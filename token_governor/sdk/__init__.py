"""
SDK for token-governor.

Provider clients that run behind a governor and a usage ledger.
"""

from .openai_client import GovernedOpenAI

__all__ = ["GovernedOpenAI"]
