"""
Prompt optimisation heuristics.

Advisory checks that point out where a prompt spends tokens it does not
need. Nothing here blocks a request.
"""

import re
from collections import Counter
from dataclasses import dataclass, field
from typing import List

from .token_counter import estimate_tokens

VERBOSITY_THRESHOLD_CHARS = 2000
PHRASE_WORDS = 5
PHRASE_REPEAT_LIMIT = 2
REPEATED_RUN_MIN_CHARS = 100
MAX_EXAMPLES = 3
TOKENS_PER_EXAMPLE = 50
ROLE_REDUNDANCY_TOKENS = 50

MILD_SAVINGS_RATIO = 0.10
AGGRESSIVE_SAVINGS_RATIO = 0.15
# Below this share of the prompt, savings are not worth a rewrite
MIN_SAVINGS_RATIO = 0.05

# A short unit (1-10 chars) repeated back-to-back at least ten times.
# Units without a word character (rules, indentation) are layout, not content.
_REPEATED_RUN = re.compile(r"(.{1,10}?)\1{9,}", re.DOTALL)
_WORD_CHAR = re.compile(r"\w")
_EXAMPLE_MARKER = re.compile(r"example:", re.IGNORECASE)
_ROLE_INTRO = re.compile(r"\byou are\b", re.IGNORECASE)
_ROLE_STATEMENT = re.compile(r"\byour role is\b", re.IGNORECASE)

RECOMMEND_SPLIT = "Consider breaking into smaller, focused prompts"
RECOMMEND_DEDUPLICATE = "Remove repetitive content"
RECOMMEND_FEWER_EXAMPLES = "Reduce number of examples - 2-3 are usually sufficient"
RECOMMEND_CONSOLIDATE_ROLE = "Consolidate role definitions to avoid redundancy"


@dataclass
class PromptOptimization:
    """Outcome of analysing a prompt."""
    should_optimize: bool
    recommendations: List[str] = field(default_factory=list)
    estimated_savings: int = 0


def has_repetitive_content(text: str) -> bool:
    """Detect repeated phrases or long runs of repeated characters.

    A prompt is repetitive when the same five-word phrase appears more than
    twice, or when a short unit containing a word character repeats
    back-to-back over at least REPEATED_RUN_MIN_CHARS characters.
    """
    words = text.lower().split()
    phrases = Counter(
        " ".join(words[i:i + PHRASE_WORDS])
        for i in range(len(words) - PHRASE_WORDS + 1)
    )
    if any(count > PHRASE_REPEAT_LIMIT for count in phrases.values()):
        return True

    return any(
        len(match.group(0)) >= REPEATED_RUN_MIN_CHARS and _WORD_CHAR.search(match.group(1))
        for match in _REPEATED_RUN.finditer(text)
    )


def analyze_prompt(prompt: str) -> PromptOptimization:
    """Analyse a prompt for token-saving opportunities.

    Rules:
    - Repetition: repeated phrases or runs, saves ~10% of the prompt
    - Verbosity: longer than 2000 characters, saves ~15%
    - Examples: more than 3 "Example:" markers, ~50 tokens each
    - Role redundancy: both "You are" and "Your role is", ~50 tokens

    Args:
        prompt: Prompt text to analyse

    Returns:
        PromptOptimization; should_optimize is set only when a rule fired
        and the savings exceed 5% of the prompt's estimated tokens
    """
    recommendations: List[str] = []
    savings = 0.0
    current_tokens = estimate_tokens(prompt)

    if has_repetitive_content(prompt):
        recommendations.append(RECOMMEND_DEDUPLICATE)
        savings += current_tokens * MILD_SAVINGS_RATIO

    if len(prompt) > VERBOSITY_THRESHOLD_CHARS:
        recommendations.append(RECOMMEND_SPLIT)
        savings += current_tokens * AGGRESSIVE_SAVINGS_RATIO

    example_count = len(_EXAMPLE_MARKER.findall(prompt))
    if example_count > MAX_EXAMPLES:
        recommendations.append(RECOMMEND_FEWER_EXAMPLES)
        savings += example_count * TOKENS_PER_EXAMPLE

    if _ROLE_INTRO.search(prompt) and _ROLE_STATEMENT.search(prompt):
        recommendations.append(RECOMMEND_CONSOLIDATE_ROLE)
        savings += ROLE_REDUNDANCY_TOKENS

    return PromptOptimization(
        should_optimize=bool(recommendations) and savings > current_tokens * MIN_SAVINGS_RATIO,
        recommendations=recommendations,
        estimated_savings=int(savings)
    )
