"""Guardrail 拒答文案。

安全类拒答（prompt_injection / jailbreak）刻意保持笼统，不透露检测手段。
"""

from typing import Dict, Literal

CheckType = Literal["prompt_injection", "jailbreak", "off_topic", "content_moderation"]

REJECTION_MESSAGES: Dict[str, str] = {
    "prompt_injection": (
        "I can only help with questions about my professional background. "
        "Could you rephrase your question?"
    ),
    "jailbreak": (
        "I can only help with questions about my professional background. "
        "Could you rephrase your question?"
    ),
    "off_topic": (
        "I'm here to answer questions about my experience, skills, and projects. "
        "What would you like to know about my professional background?"
    ),
    "content_moderation": (
        "I can't respond to that type of message. "
        "Feel free to ask about my professional experience instead."
    ),
}

OUTPUT_REJECTION_MESSAGE = (
    "I apologize, but I can't provide that response. "
    "Let me help you with something else about my professional background."
)

# 拒答文案中不应出现的词
FORBIDDEN_SECURITY_TERMS = (
    "injection",
    "jailbreak",
    "detected",
    "blocked",
    "security",
    "attack",
    "malicious",
)


def rejection_message(check_type: str) -> str:
    return REJECTION_MESSAGES.get(check_type, REJECTION_MESSAGES["off_topic"])


def contains_forbidden_terms(message: str) -> bool:
    lowered = message.lower()
    return any(term in lowered for term in FORBIDDEN_SECURITY_TERMS)
