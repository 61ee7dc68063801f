"""Writer Agent: builds chapter write / revise requests and parses the engine reply."""

import logging
from typing import Optional

from agents.base_agent import BaseAgent
from config.settings import Settings
from models.chapter import ChapterWriteJob
from models.production import ProductionRecord
from tools.agent_sdk_client import AgentSDKClient, SamplingParams
from tools.llm_client import parse_json_response
from tools.text_utils import count_words, summarize_opening

logger = logging.getLogger(__name__)

# Remaining chapters at which the writer is told to start closing threads
_WRAP_UP_CHAPTERS = 10


def _optional_int(value) -> Optional[int]:
    try:
        return int(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def parse_writer_output(text: str, chapter_number: int) -> dict:
    """Parse the engine reply into title / content / summary (+ story-state hints).

    A reply that is not JSON is taken as the chapter text itself.
    """
    try:
        data = parse_json_response(text)
    except ValueError:
        logger.warning("Writer reply for ch.%d is not JSON; using raw text", chapter_number)
        data = {"content": text.strip()}

    content = str(data.get("content") or "").strip()
    deceased = data.get("deceased_characters") or []
    return {
        "title": str(data.get("title") or f"Chapter {chapter_number}").strip(),
        "content": content,
        "summary": str(data.get("summary") or summarize_opening(content)).strip(),
        "word_count": count_words(content),
        "realm_index": _optional_int(data.get("realm_index")),
        "deceased_characters": [str(n) for n in deceased if n],
    }


class WriterAgent(BaseAgent):
    """Writes and revises chapters through the generation engine."""

    def __init__(
        self,
        llm_client: Optional[AgentSDKClient] = None,
        settings: Optional[Settings] = None,
    ):
        super().__init__(llm_client, settings)
        self._template = self._load_prompt("writer")

    def _persona(self, production: ProductionRecord) -> str:
        persona = self._extract_section(self._template, "System Prompt")
        if production.persona:
            persona += "\n\n" + production.persona
        return persona + "\n\n" + self._extract_section(self._template, "Output Format").format()

    def _progress_note(self, production: ProductionRecord, chapter_number: int) -> str:
        if not production.total_chapters:
            return ""
        remaining = production.total_chapters - chapter_number
        if remaining <= _WRAP_UP_CHAPTERS:
            return (
                f"Only {remaining} chapters remain after this one: "
                "start resolving the main conflicts and open threads."
            )
        return ""

    async def write_chapter(self, production: ProductionRecord, job: ChapterWriteJob) -> dict:
        """Write chapter ``job.chapter_number`` of ``production``.

        Returns:
            Dict with keys: title, content, summary, word_count, realm_index,
            deceased_characters.
        """
        objectives = job.objectives or production.context.objectives
        prompt = self._extract_section(self._template, "Write Chapter").format(
            title=production.title,
            genre=production.genre or "web fiction",
            premise=production.premise or "(none given)",
            running_summary=production.running_summary or "(this is the first chapter)",
            previous_summary=job.previous_summary or "(none)",
            objectives="\n".join(f"- {o}" for o in objectives) or "- (none)",
            chapter_number=job.chapter_number,
            arc_number=job.arc_number,
            target_intensity=round(job.target_intensity),
            word_count_min=self.settings.quality.word_count_min,
            word_count_max=self.settings.quality.word_count_max,
            progress_note=self._progress_note(production, job.chapter_number),
        )

        logger.info("Writing production %d chapter %d...", production.id, job.chapter_number)
        result = await self.llm.generate_with_retry(
            prompt,
            persona=self._persona(production),
            sampling=SamplingParams(model=self.settings.llm_model_writing),
        )
        chapter = parse_writer_output(result.text, job.chapter_number)
        logger.info("Chapter %d written: '%s', %d words",
                    job.chapter_number, chapter["title"], chapter["word_count"])
        return chapter

    async def revise_chapter(
        self,
        production: ProductionRecord,
        job: ChapterWriteJob,
        content: str,
        instructions: str,
        attempt: int = 1,
    ) -> dict:
        """Revise ``content`` following the repair loop's ``instructions``."""
        prompt = self._extract_section(self._template, "Revise Chapter").format(
            chapter_number=job.chapter_number,
            title=production.title,
            instructions=instructions,
            content=content,
        )
        logger.info("Revising production %d chapter %d (attempt %d)",
                    production.id, job.chapter_number, attempt)
        result = await self.llm.generate_with_retry(
            prompt,
            persona=self._persona(production),
            sampling=SamplingParams(model=self.settings.llm_model_rewriting),
        )
        return parse_writer_output(result.text, job.chapter_number)
