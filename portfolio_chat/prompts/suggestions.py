"""Curated questions offered to visitors in the chat panel."""

from __future__ import annotations

import random
from typing import Dict, List, Optional, Sequence

from portfolio_chat.domain.models import Message

STARTER_QUESTIONS: List[str] = [
    "What does a typical project of yours look like end to end?",
    "Which project are you most proud of, and why?",
    "How did your career path lead to your current role?",
    "What's your approach to cloud migrations?",
    "How do you help teams get started with AI without the hype?",
    "How do you build trust with executive stakeholders?",
    "What's your philosophy on team leadership?",
    "How do you handle unclear or ambiguous requirements?",
    "Which industries have you worked with most?",
    "What's the biggest challenge in AI adoption you've seen?",
    "What lessons have you learned from projects that failed?",
    "Which certifications do you hold?",
]

FOLLOW_UP_CATEGORIES: Dict[str, List[str]] = {
    "career": [
        "What was your most challenging role?",
        "How has your career evolved over the years?",
        "What's next in your career journey?",
    ],
    "technical": [
        "Can you go deeper on the technical details?",
        "Which tools and technologies do you prefer?",
        "How do you stay current with new tech?",
    ],
    "leadership": [
        "How do you mentor your team members?",
        "What's your management style?",
        "How do you handle conflicts?",
    ],
    "ai": [
        "Which AI use cases excite you most?",
        "How do you evaluate AI readiness?",
        "What's your view on AI in the enterprise?",
    ],
    "personal": [
        "What motivates you professionally?",
        "How do you balance work and side projects?",
        "What advice would you give to someone starting out?",
    ],
    "cloud": [
        "Which cloud services do you use most?",
        "How do you approach cloud cost optimization?",
        "What's your favorite cloud project?",
    ],
}

TOPIC_KEYWORDS: Dict[str, List[str]] = {
    "career": ["career", "job", "role", "position", "work", "experience", "journey", "transition"],
    "technical": ["technical", "technology", "code", "programming", "development", "architecture", "system"],
    "leadership": ["team", "lead", "manage", "leadership", "mentor", "guide"],
    "ai": ["ai", "artificial intelligence", "genai", "machine learning", "ml", "llm", "chatbot"],
    "personal": ["motivation", "passion", "advice", "balance", "personal", "why"],
    "cloud": ["cloud", "aws", "azure", "gcp", "migration", "kubernetes", "serverless"],
}

DEFAULT_TOPICS = ("career", "technical", "personal")


def starter_questions(count: int = 3, rng: Optional[random.Random] = None) -> List[str]:
    rng = rng or random.Random()
    return rng.sample(STARTER_QUESTIONS, min(count, len(STARTER_QUESTIONS)))


def detect_topics(messages: Sequence[Message]) -> List[str]:
    """Topics mentioned in the last four messages, in category order."""

    text = " ".join(m.content.lower() for m in messages[-4:])
    words = set(text.replace("?", " ").replace(",", " ").replace(".", " ").split())
    topics = []
    for topic, keywords in TOPIC_KEYWORDS.items():
        # short keywords like "ai"/"ml" only count as whole words
        if any((kw in words) if len(kw) <= 3 else (kw in text) for kw in keywords):
            topics.append(topic)
    return topics


def follow_up_suggestions(
    messages: Sequence[Message],
    count: int = 3,
    rng: Optional[random.Random] = None,
) -> List[str]:
    rng = rng or random.Random()
    topics = detect_topics(messages) or list(DEFAULT_TOPICS)
    pool: List[str] = []
    for topic in topics:
        pool.extend(FOLLOW_UP_CATEGORIES[topic])
    return rng.sample(pool, min(count, len(pool)))
