"""Transcript chunking test suite."""
from __future__ import annotations

from recap.services.chunker import split_sentences, split_transcript
from recap.tests.base import TestSuite


def _long_transcript(sentences: int = 200) -> str:
    return " ".join(
        f"Sentence number {i} covers the rollout schedule for team {i % 7}." for i in range(sentences)
    )


class TranscriptChunkingSuite(TestSuite):
    suite_id = "transcript-chunking"
    name = "Transcript Chunking"
    description = "Sentence-aligned splitting of long transcripts"

    def _register_tests(self):
        self.add_test("TC-001", "Short transcript is a single chunk", self._test_short)
        self.add_test("TC-002", "Long transcript packed under the size limit", self._test_packing)
        self.add_test("TC-003", "Oversized sentence becomes its own chunk", self._test_oversized_sentence)
        self.add_test("TC-004", "Chunks below the minimum length are dropped", self._test_min_length)
        self.add_test("TC-005", "Sentence terminators stay with their sentence", self._test_sentences)

    def _test_short(self, ctx: dict):
        text = "We agreed to ship on Friday. Alice owns the release notes."
        assert split_transcript(text) == [text]

    def _test_packing(self, ctx: dict):
        text = _long_transcript()
        assert len(text) > 8000
        chunks = split_transcript(text)
        assert len(chunks) > 1
        assert all(len(c) <= 2000 for c in chunks)
        assert " ".join(chunks) == text
        return {
            "passed": True,
            "message": f"{len(chunks)} chunks",
            "details": {"sizes": [len(c) for c in chunks]},
        }

    def _test_oversized_sentence(self, ctx: dict):
        huge = "word " * 600 + "end."
        text = f"Opening remarks were brief. {huge} Closing remarks followed."
        chunks = split_transcript(text, max_length=100, chunk_size_limit=500, min_chunk_length=5)
        assert huge.strip() in chunks
        assert chunks[0] == "Opening remarks were brief."
        assert chunks[-1] == "Closing remarks followed."

    def _test_min_length(self, ctx: dict):
        text = "A" * 60 + ". Ok. " + "B" * 60 + "."
        chunks = split_transcript(text, max_length=10, chunk_size_limit=62, min_chunk_length=20)
        assert chunks == ["A" * 60 + ".", "B" * 60 + "."], chunks

    def _test_sentences(self, ctx: dict):
        assert split_sentences("Really? Yes! Done.  ") == ["Really?", "Yes!", "Done."]
