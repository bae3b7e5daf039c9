"""访客输入的 Guardrails（注入/越狱/离题/内容审核）。"""

from portfolio_chat.guardrails.messages import REJECTION_MESSAGES, rejection_message
from portfolio_chat.guardrails.service import (
    CHAT_GUARDRAIL_CONFIG,
    GuardrailConfig,
    GuardrailsService,
    GuardrailVerdict,
    InputGuard,
    anonymized_request_id,
)

__all__ = [
    "CHAT_GUARDRAIL_CONFIG",
    "GuardrailConfig",
    "GuardrailVerdict",
    "GuardrailsService",
    "InputGuard",
    "REJECTION_MESSAGES",
    "anonymized_request_id",
    "rejection_message",
]
