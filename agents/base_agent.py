"""Base agent class with common engine and prompt utilities."""

import logging
from functools import lru_cache
from pathlib import Path
from typing import Optional

from config.settings import Settings
from tools.agent_sdk_client import AgentSDKClient

logger = logging.getLogger(__name__)

_PROMPTS_DIR = Path(__file__).parent.parent / "config" / "prompts"


@lru_cache(maxsize=8)
def _read_prompt_file(path: str) -> str:
    return Path(path).read_text(encoding="utf-8")


class BaseAgent:
    """Base class for agents that talk to the generation engine.

    The engine client is injected so tests can substitute a mock; without
    one a client is built from ``settings``.
    """

    def __init__(
        self,
        llm_client: Optional[AgentSDKClient] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or Settings()
        self.llm = llm_client or AgentSDKClient(self.settings)

    def _load_prompt(self, template_name: str) -> str:
        """Load config/prompts/<template_name>.md (cached after first read)."""
        path = _PROMPTS_DIR / f"{template_name}.md"
        if not path.exists():
            raise FileNotFoundError(f"Prompt template not found: {path}")
        return _read_prompt_file(str(path))

    def _extract_section(self, template: str, section_header: str) -> str:
        """Text between the '## <section_header>' line and the next '## ' header."""
        result = []
        capturing = False
        for line in template.split("\n"):
            is_header = line.strip().startswith("## ")
            if is_header and capturing:
                break
            if is_header and section_header in line:
                capturing = True
                continue
            if capturing:
                result.append(line)
        if not capturing:
            logger.warning("Prompt section '%s' not found", section_header)
        return "\n".join(result).strip()
