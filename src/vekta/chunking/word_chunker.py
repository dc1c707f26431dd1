from __future__ import annotations

from collections.abc import Iterator

from vekta.chunking.interfaces import BaseChunker, TextChunk

DEFAULT_CHUNK_WORDS = 256


class WordWindowChunker(BaseChunker):
    """Splits text into consecutive windows of ``chunk_words`` words.

    Each chunk remembers the range of lines its words came from so that a
    reranker can later re-read exactly that span from disk. The text itself
    is held whole; chunk records are only built as they are pulled.
    """

    def __init__(self, chunk_words: int = DEFAULT_CHUNK_WORDS):
        if chunk_words < 1:
            raise ValueError("chunk_words must be >= 1")
        self.chunk_words = chunk_words

    def chunk(self, text: str, *, path: str) -> Iterator[TextChunk]:
        words: list[str] = []
        line_of_word: list[int] = []
        for line_no, line in enumerate(text.splitlines()):
            for word in line.split():
                words.append(word)
                line_of_word.append(line_no)

        if not words:
            yield TextChunk(path=path, chunk_index=0, text="", start_line=0, end_line=0)
            return

        for i, start in enumerate(range(0, len(words), self.chunk_words)):
            end = min(start + self.chunk_words, len(words))
            yield TextChunk(
                path=path,
                chunk_index=i,
                text=" ".join(words[start:end]),
                start_line=line_of_word[start],
                end_line=line_of_word[end - 1] + 1,
            )
