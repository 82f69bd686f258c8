import logging
import re

MAX_TRANSCRIPT_LENGTH = 8000
CHUNK_SIZE_LIMIT = 2000
MIN_CHUNK_LENGTH = 20

# Split after sentence terminators, keeping them with their sentence.
_SENTENCE_END = re.compile(r"(?<=[.!?])\s+")

_logger = logging.getLogger("recap.chunker")


def split_sentences(text: str) -> list[str]:
    return [s for s in _SENTENCE_END.split(text.strip()) if s.strip()]


def split_transcript(
    text: str,
    max_length: int = MAX_TRANSCRIPT_LENGTH,
    chunk_size_limit: int = CHUNK_SIZE_LIMIT,
    min_chunk_length: int = MIN_CHUNK_LENGTH,
) -> list[str]:
    """Split a long transcript into sentence-aligned chunks.

    Transcripts up to ``max_length`` characters come back as a single chunk.
    Longer ones are packed greedily, sentence by sentence, up to
    ``chunk_size_limit`` characters; a sentence longer than the limit becomes
    its own chunk. Chunks shorter than ``min_chunk_length`` are dropped.
    """
    if len(text) <= max_length:
        return [text]

    chunks: list[str] = []
    current = ""
    for sentence in split_sentences(text):
        candidate = f"{current} {sentence}" if current else sentence
        if current and len(candidate) > chunk_size_limit:
            chunks.append(current)
            current = sentence
        else:
            current = candidate
    if current:
        chunks.append(current)

    kept = [c.strip() for c in chunks if len(c.strip()) >= min_chunk_length]
    _logger.info(
        "Transcript split: chars=%d chunks=%d dropped=%d",
        len(text),
        len(kept),
        len(chunks) - len(kept),
    )
    return kept
