"""Rule-based task classifier.

Maps a free-text prompt to a TaskCategory by keyword/regex rules checked in
priority order. Any callable with the same signature can replace it.
"""

from __future__ import annotations

import re
from typing import Callable

from podium.core.models import TaskCategory

Classifier = Callable[[str], TaskCategory]

_I = re.IGNORECASE

CATEGORY_RULES: list[tuple[TaskCategory, list[re.Pattern[str]]]] = [
    (TaskCategory.CODING, [
        re.compile(r"\b(code|function|debug|refactor|typescript|javascript|python|sql|api|bug|test|tests|test suite|unit test)\b", _I),
        re.compile(r"\b(stack trace|compile|runtime|repository|repo|pull request|lint|typecheck)\b", _I),
    ]),
    (TaskCategory.FINANCE, [
        re.compile(r"\b(finance|financial|portfolio|allocation|rebalance|valuation|dcf|options|derivatives)\b", _I),
        re.compile(r"\b(ticker|stock|bond|etf|market cap|returns?|volatility|drawdown|yield|interest rate)\b", _I),
        re.compile(r"\b(revenue|ebitda|cash flow|balance sheet|income statement)\b", _I),
    ]),
    (TaskCategory.MATH, [
        re.compile(r"\b(calculate|equation|probability|statistics|algebra|integral|derivative|matrix)\b", _I),
        re.compile(r"[\d)\]]\s*[+\-*/^]\s*[\d(\[]"),
    ]),
    (TaskCategory.RESEARCH, [
        re.compile(r"\b(latest|news|current|today|market|trend|verify|source|citation|evidence)\b", _I),
        re.compile(r"\b(compare|benchmark|survey|report)\b", _I),
    ]),
    (TaskCategory.ANALYSIS, [
        re.compile(r"\b(analyze|analysis|summarize|document|file|pdf|contract|policy|requirements)\b", _I),
        re.compile(r"\b(root cause|tradeoff|risk|postmortem)\b", _I),
    ]),
    (TaskCategory.CREATIVE, [
        re.compile(r"\b(story|poem|script|brainstorm|name ideas|creative|tagline|copywriting)\b", _I),
        re.compile(r"\b(character|plot|worldbuilding)\b", _I),
    ]),
]


def categorize_prompt(text: str) -> TaskCategory:
    """Return the first category whose rules match, else GENERAL."""
    value = (text or "").strip()
    if not value:
        return TaskCategory.GENERAL

    for category, patterns in CATEGORY_RULES:
        if any(pattern.search(value) for pattern in patterns):
            return category
    return TaskCategory.GENERAL
