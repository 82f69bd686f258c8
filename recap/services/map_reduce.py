from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import Any, Callable, Optional, TypeVar

from recap.services.errors import ParseError
from recap.services.llm import CompletionProvider, Parsed, parse_or_default
from recap.services.llm.base import require_object
from recap.services.meeting_models import (
    ActionItem,
    ChunkSummary,
    Decision,
    MAX_BULLETS,
    MeetingArtifacts,
    OpenQuestion,
    SectionSummary,
    Summaries,
    truncate_words,
)
from recap.services.progress import (
    STAGE_MAPPING,
    STAGE_REDUCING,
    STAGE_REFINING,
    ProgressReporter,
)
from recap.services.retry import RetryPolicy, retry_transient

FALLBACK_SUMMARY_CHARS = 200
SECTIONS_PER_GROUP = 3
INTER_CHUNK_DELAY = 0.5

T = TypeVar("T")

_ITEM_SCHEMA = """  "action_items": [{
    "title": "string",
    "assignee": "string",
    "assignee_email": null,
    "due_date": null,
    "priority": "Medium",
    "status": "Not Started",
    "source_quote": "string",
    "confidence": 0.8,
    "tags": []
  }],
  "decisions": [{
    "statement": "string",
    "rationale": null,
    "source_quote": "string",
    "confidence": 0.8,
    "tags": []
  }],
  "open_questions": [{
    "question": "string",
    "owner": null,
    "needed_by": null,
    "source_quote": "string"
  }]"""

PROMPTS = {
    "map": (
        "Extract facts from this transcript chunk. Output strict JSON only.\n"
        "Schema: {\n"
        '  "chunk_summary": "<=150 words",\n'
        f"{_ITEM_SCHEMA}\n"
        "}\n"
        "Rules: Only explicit commitments. If uncertain, lower confidence. JSON only."
    ),
    "reduce": (
        "Merge and deduplicate chunk summaries. Output strict JSON only.\n"
        "Schema: {\n"
        '  "section_summary": "<=250 words",\n'
        f"{_ITEM_SCHEMA}\n"
        "}\n"
        "Rules: Deduplicate by normalized title+assignee. Prefer entries with due dates. JSON only."
    ),
    "refine": (
        "Produce final meeting artifacts from section summaries. Output strict JSON only.\n"
        "Schema: {\n"
        '  "summaries": {\n'
        '    "executive_120w": "string",\n'
        '    "detailed_400w": "string",\n'
        '    "bullet_12": ["string"]\n'
        "  },\n"
        f"{_ITEM_SCHEMA}\n"
        "}\n"
        "Rules: Executive <=120 words, Detailed <=400 words, <=12 bullets. JSON only."
    ),
}


def _parse_items(obj: dict, key: str, factory: Callable[[dict, str], T], prefix: str) -> list[T]:
    value = obj.get(key, [])
    if not isinstance(value, list):
        raise ParseError(f"'{key}' is not a list")
    return [
        factory(entry, f"{prefix}_{index}")
        for index, entry in enumerate(value)
        if isinstance(entry, dict)
    ]


def _dumps(items: list) -> str:
    return json.dumps([item.to_dict() for item in items])


def dedupe_action_items(items: list[ActionItem]) -> list[ActionItem]:
    """Collapse items with the same normalised title and assignee.

    Order follows first occurrence; a later duplicate replaces the kept one
    only when it has a due date and the kept one does not.
    """
    kept: dict[str, ActionItem] = {}
    for item in items:
        key = item.dedupe_key()
        current = kept.get(key)
        if current is None or (item.due_date and not current.due_date):
            kept[key] = item
    return list(kept.values())


def dedupe_decisions(items: list[Decision]) -> list[Decision]:
    kept: dict[str, Decision] = {}
    for item in items:
        kept.setdefault(item.dedupe_key(), item)
    return list(kept.values())


def dedupe_questions(items: list[OpenQuestion]) -> list[OpenQuestion]:
    kept: dict[str, OpenQuestion] = {}
    for item in items:
        key = item.dedupe_key()
        current = kept.get(key)
        if current is None or (item.owner and not current.owner):
            kept[key] = item
    return list(kept.values())


def fallback_chunk_summary(chunk_id: str, text: str) -> ChunkSummary:
    return ChunkSummary(
        id=chunk_id,
        summary=text[:FALLBACK_SUMMARY_CHARS] + "...",
        fallback=True,
    )


def union_section(section_id: str, group: list) -> SectionSummary:
    """Naive merge of chunk summaries, no deduplication."""
    return SectionSummary(
        id=section_id,
        summary=" ".join(c.summary for c in group if c.summary),
        chunk_ids=[c.id for c in group],
        action_items=[a for c in group for a in c.action_items],
        decisions=[d for c in group for d in c.decisions],
        questions=[q for c in group for q in c.questions],
        fallback=True,
    )


def section_from_chunk(chunk: ChunkSummary) -> SectionSummary:
    return SectionSummary(
        id=f"section_{chunk.id}",
        summary=chunk.summary,
        chunk_ids=[chunk.id],
        action_items=list(chunk.action_items),
        decisions=list(chunk.decisions),
        questions=list(chunk.questions),
        fallback=chunk.fallback,
    )


def naive_artifacts(sections: list[SectionSummary]) -> MeetingArtifacts:
    joined = " ".join(s.summary for s in sections if s.summary)
    bullets = [truncate_words(s.summary, 30) for s in sections if s.summary]
    return MeetingArtifacts(
        action_items=[a for s in sections for a in s.action_items],
        decisions=[d for s in sections for d in s.decisions],
        open_questions=[q for s in sections for q in s.questions],
        summaries=Summaries(executive=joined, detailed=joined, bullets=bullets[:MAX_BULLETS]).bounded(),
    )


class MapReduceAnalyzer:
    """Map, reduce and refine a chunked transcript into meeting artifacts.

    Every completion call is isolated by :func:`parse_or_default`; a failing
    chunk, group or refine step degrades to a local fallback instead of
    aborting the run. Chunks and groups are processed sequentially.
    """

    def __init__(
        self,
        provider: CompletionProvider,
        *,
        retry_policy: Optional[RetryPolicy] = None,
        sections_per_group: int = SECTIONS_PER_GROUP,
        inter_chunk_delay: float = INTER_CHUNK_DELAY,
        sleep: Callable[[float], Any] = asyncio.sleep,
    ) -> None:
        self._provider = provider
        self._retry = retry_policy or RetryPolicy(retries=2, delay=3.0, should_retry=retry_transient)
        self._sections_per_group = sections_per_group
        self._inter_chunk_delay = inter_chunk_delay
        self._sleep = sleep
        self._logger = logging.getLogger("recap.analysis")

    async def _call(self, prompt: str, user: str, label: str):
        return await self._retry.run(lambda: self._provider.complete(prompt, user), label=label)

    async def analyze(
        self,
        chunks: list[str],
        context: str,
        reporter: Optional[ProgressReporter] = None,
    ) -> MeetingArtifacts:
        started = time.perf_counter()
        summaries = await self.map_chunks(chunks, context, reporter)
        if len(summaries) == 1:
            sections = [section_from_chunk(summaries[0])]
        else:
            sections = await self.reduce_sections(summaries, context, reporter)
        artifacts = await self.refine(sections, context, reporter)
        self._logger.info(
            "Analysis complete: chunks=%d sections=%d actions=%d decisions=%d questions=%d (%.0fms)",
            len(summaries),
            len(sections),
            len(artifacts.action_items),
            len(artifacts.decisions),
            len(artifacts.open_questions),
            (time.perf_counter() - started) * 1000,
        )
        return artifacts

    async def map_chunk(self, text: str, context: str, chunk_id: str) -> Parsed[ChunkSummary]:
        def build(data: Any) -> ChunkSummary:
            obj = require_object(data)
            summary = obj.get("chunk_summary")
            if not isinstance(summary, str):
                raise ParseError("Missing 'chunk_summary'")
            return ChunkSummary(
                id=chunk_id,
                summary=summary.strip(),
                action_items=_parse_items(obj, "action_items", ActionItem.from_dict, f"{chunk_id}_action"),
                decisions=_parse_items(obj, "decisions", Decision.from_dict, f"{chunk_id}_decision"),
                questions=_parse_items(obj, "open_questions", OpenQuestion.from_dict, f"{chunk_id}_question"),
            )

        return await parse_or_default(
            lambda: self._call(PROMPTS["map"], f"{context}\n\nChunk transcript:\n{text}", f"map {chunk_id}"),
            build,
            lambda exc: fallback_chunk_summary(chunk_id, text),
            logger=self._logger,
            label=f"Map {chunk_id}",
        )

    async def map_chunks(
        self,
        chunks: list[str],
        context: str,
        reporter: Optional[ProgressReporter] = None,
    ) -> list[ChunkSummary]:
        total = len(chunks)
        results: list[ChunkSummary] = []
        for index, text in enumerate(chunks):
            if index > 0 and self._inter_chunk_delay > 0:
                await self._sleep(self._inter_chunk_delay)
            if reporter is not None:
                reporter.emit(
                    STAGE_MAPPING,
                    index / total * 100,
                    f"Analyzing section {index + 1} of {total}",
                    current_chunk=index + 1,
                    total_chunks=total,
                )
            parsed = await self.map_chunk(text, context, f"chunk_{index}")
            results.append(parsed.value)
        if reporter is not None:
            reporter.emit(STAGE_MAPPING, 100, "Sections analyzed", current_chunk=total, total_chunks=total)
        fallbacks = sum(1 for r in results if r.fallback)
        if fallbacks:
            self._logger.warning("Map finished with %d/%d fallback chunks", fallbacks, total)
        return results

    async def reduce_group(self, section_id: str, group: list[ChunkSummary], context: str) -> Parsed[SectionSummary]:
        def build(data: Any) -> SectionSummary:
            obj = require_object(data)
            summary = obj.get("section_summary")
            if not isinstance(summary, str):
                raise ParseError("Missing 'section_summary'")
            # Keys left out of the reply keep the group's items.
            union = union_section(section_id, group)
            return SectionSummary(
                id=section_id,
                summary=summary.strip(),
                chunk_ids=[c.id for c in group],
                action_items=dedupe_action_items(
                    _parse_items(obj, "action_items", ActionItem.from_dict, f"{section_id}_action")
                    if "action_items" in obj else union.action_items
                ),
                decisions=dedupe_decisions(
                    _parse_items(obj, "decisions", Decision.from_dict, f"{section_id}_decision")
                    if "decisions" in obj else union.decisions
                ),
                questions=dedupe_questions(
                    _parse_items(obj, "open_questions", OpenQuestion.from_dict, f"{section_id}_question")
                    if "open_questions" in obj else union.questions
                ),
            )

        chunk_text = "\n".join(c.summary for c in group)
        user = (
            f"{context}\n\n"
            f"Chunk summaries:\n{chunk_text}\n\n"
            f"Action items:\n{_dumps([a for c in group for a in c.action_items])}\n\n"
            f"Decisions:\n{_dumps([d for c in group for d in c.decisions])}\n\n"
            f"Questions:\n{_dumps([q for c in group for q in c.questions])}"
        )
        return await parse_or_default(
            lambda: self._call(PROMPTS["reduce"], user, f"reduce {section_id}"),
            build,
            lambda exc: union_section(section_id, group),
            logger=self._logger,
            label=f"Reduce {section_id}",
        )

    async def reduce_sections(
        self,
        summaries: list[ChunkSummary],
        context: str,
        reporter: Optional[ProgressReporter] = None,
    ) -> list[SectionSummary]:
        size = self._sections_per_group
        groups = [summaries[i:i + size] for i in range(0, len(summaries), size)]
        sections: list[SectionSummary] = []
        for index, group in enumerate(groups):
            if reporter is not None:
                reporter.emit(
                    STAGE_REDUCING,
                    index / len(groups) * 100,
                    f"Merging group {index + 1} of {len(groups)}",
                    current_chunk=index + 1,
                    total_chunks=len(groups),
                )
            parsed = await self.reduce_group(f"section_{index}", group, context)
            sections.append(parsed.value)
        if reporter is not None:
            reporter.emit(STAGE_REDUCING, 100, "Sections merged")
        return sections

    async def refine(
        self,
        sections: list[SectionSummary],
        context: str,
        reporter: Optional[ProgressReporter] = None,
    ) -> MeetingArtifacts:
        if reporter is not None:
            reporter.emit(STAGE_REFINING, 0, "Producing final summaries")

        def build(data: Any) -> MeetingArtifacts:
            obj = require_object(data)
            raw_summaries = obj.get("summaries")
            if not isinstance(raw_summaries, dict):
                raise ParseError("Missing 'summaries'")
            summaries = Summaries.from_dict(raw_summaries)
            if not summaries.executive:
                raise ParseError("Missing 'executive_120w'")
            merged = naive_artifacts(sections)
            return MeetingArtifacts(
                action_items=dedupe_action_items(
                    _parse_items(obj, "action_items", ActionItem.from_dict, "action")
                    if "action_items" in obj else merged.action_items
                ),
                decisions=dedupe_decisions(
                    _parse_items(obj, "decisions", Decision.from_dict, "decision")
                    if "decisions" in obj else merged.decisions
                ),
                open_questions=dedupe_questions(
                    _parse_items(obj, "open_questions", OpenQuestion.from_dict, "question")
                    if "open_questions" in obj else merged.open_questions
                ),
                summaries=Summaries(
                    executive=summaries.executive,
                    detailed=summaries.detailed or summaries.executive,
                    bullets=summaries.bullets or merged.summaries.bullets,
                ),
            )

        section_text = "\n".join(s.summary for s in sections)
        user = (
            f"{context}\n\n"
            f"Section summaries:\n{section_text}\n\n"
            f"Merged action items:\n{_dumps([a for s in sections for a in s.action_items])}\n\n"
            f"Merged decisions:\n{_dumps([d for s in sections for d in s.decisions])}\n\n"
            f"Merged questions:\n{_dumps([q for s in sections for q in s.questions])}"
        )
        parsed = await parse_or_default(
            lambda: self._call(PROMPTS["refine"], user, "refine"),
            build,
            lambda exc: naive_artifacts(sections),
            logger=self._logger,
            label="Refine",
        )
        artifacts = parsed.value
        artifacts.summaries = artifacts.summaries.bounded()
        if reporter is not None:
            message = "Summaries ready (fallback)" if parsed.fallback_used else "Summaries ready"
            reporter.emit(STAGE_REFINING, 100, message)
        return artifacts
