"""系统提示词加载工具。

按语言(locale) 从 prompts/<locale> 目录读取作品集助手的 system prompt 模板，
并把内容加载层提供的事实材料（经历/项目/技能文本）填入 {knowledge} 占位符，
用于构造发给模型的 system 消息。
"""

from pathlib import Path
from typing import Optional

from portfolio_chat.config.settings import settings


PROMPTS_DIR = Path(__file__).resolve().parent
KNOWLEDGE_PLACEHOLDER = "{knowledge}"
NO_KNOWLEDGE = "(No portfolio content has been provided.)"


def load_system_prompt(knowledge: str = "", path: Optional[str] = None, locale: str = "en") -> str:
    """加载 system prompt 模板并填入 grounding 文本。

    path 未指定时依次尝试 settings.system_prompt_path 与内置模板。
    """

    explicit = path or getattr(settings, "system_prompt_path", None)
    fname = Path(explicit) if explicit else PROMPTS_DIR / locale / "portfolio_system.md"
    template = fname.read_text(encoding="utf-8")
    return template.replace(KNOWLEDGE_PLACEHOLDER, knowledge.strip() or NO_KNOWLEDGE)
