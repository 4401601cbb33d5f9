"""Sentence-based chunk splitter for knowledge base documents.

Splits raw document text into overlapping chunks sized for embedding.
"""

from echonext.knowledge.language import get_language_policy
from echonext.knowledge.models import Language

# Default chunk configuration
DEFAULT_CHUNK_SIZE = 500  # characters
DEFAULT_CHUNK_OVERLAP = 50  # characters, approximated as words (see _overlap_words)


def chunk_text(
    raw_text: str,
    language: Language | str = Language.JA,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    chunk_overlap: int = DEFAULT_CHUNK_OVERLAP,
) -> list[str]:
    """Split text into overlapping chunks at sentence boundaries.

    Sentences are accumulated greedily. A sentence that would push a
    non-empty buffer past ``chunk_size`` flushes the buffer first, and the
    next buffer is seeded with trailing words of the flushed one. A single
    sentence longer than ``chunk_size`` becomes its own oversized chunk.

    Args:
        raw_text: Text to split.
        language: Language code selecting the sentence terminators.
        chunk_size: Target maximum characters per chunk.
        chunk_overlap: Overlap target in characters between chunks.

    Returns:
        List of chunk strings, empty for blank input.
    """
    sentences = get_language_policy(language).split_sentences(raw_text)

    chunks: list[str] = []
    current_chunk = ""

    for sentence in sentences:
        if len(current_chunk + sentence) > chunk_size and current_chunk:
            chunks.append(current_chunk.strip())
            overlap = _overlap_words(current_chunk, chunk_overlap)
            current_chunk = f"{overlap} {sentence}" if overlap else sentence
        else:
            current_chunk += f" {sentence}" if current_chunk else sentence

    # Don't forget the last chunk
    if current_chunk.strip():
        chunks.append(current_chunk.strip())

    return chunks


def _overlap_words(text: str, chunk_overlap: int) -> str:
    """Get trailing words of a flushed chunk to seed the next one.

    The character overlap target is approximated as ``chunk_overlap // 10``
    whitespace-delimited words. Sentences inside a chunk are joined by
    spaces, so for unspaced scripts such as Japanese each "word" is a whole
    sentence.

    Args:
        text: The chunk that was just flushed.
        chunk_overlap: Overlap target in characters.

    Returns:
        Overlap text, or empty string when the word count rounds to zero.
    """
    word_count = chunk_overlap // 10
    if word_count <= 0:
        return ""
    return " ".join(text.split()[-word_count:])
