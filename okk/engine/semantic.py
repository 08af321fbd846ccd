"""Free-text rule checks judged by the LLM."""

import logging

from okk.engine.judge import Judge
from okk.schemas.audit import SemanticResult

logger = logging.getLogger(__name__)

SEMANTIC_PROMPT_KEY = "semantic_check"

DEFAULT_SEMANTIC_PROMPT = """
You are a quality assurance auditor for a sales department.
Check the input text ({context}) against the rule definition and decide whether
the rule is violated.

Output JSON:
{
  "is_violation": true or false,
  "evidence": "quote from the text that proves the violation, or null",
  "confidence": number between 0.0 and 1.0,
  "reasoning": "short explanation in Russian"
}

Be strict about the rule wording. If the text is ambiguous, answer that there is
no violation unless the rule demands that something was done.
"""


def _no_violation(reasoning: str) -> SemanticResult:
    return SemanticResult(is_violation=False, evidence=None, confidence=0.0, reasoning=reasoning)


async def analyze_text(
    judge: Judge,
    text: str | None,
    rule_prompt: str,
    context_description: str = "Text Content",
    system_prompt: str | None = None,
) -> SemanticResult:
    """Judge ``text`` against ``rule_prompt``; errors and blank input mean no violation."""
    if not text or len(text.strip()) < 2:
        return _no_violation("Текст слишком короткий для анализа")

    prompt = (system_prompt or DEFAULT_SEMANTIC_PROMPT).replace("{context}", context_description)
    try:
        raw = await judge.judge(prompt, f"RULE: {rule_prompt}\n\nINPUT TEXT:\n{text}")
        confidence = raw.get("confidence")
        evidence = raw.get("evidence")
        return SemanticResult(
            is_violation=raw.get("is_violation") is True,
            evidence=evidence if isinstance(evidence, str) and evidence else None,
            confidence=float(confidence) if isinstance(confidence, (int, float)) else 0.0,
            reasoning=str(raw.get("reasoning") or ""),
        )
    except Exception:
        logger.exception("Semantic analysis failed")
        return _no_violation("Ошибка во время AI анализа")
