import re
from typing import Iterable, Iterator, List, Optional

_LINE_BREAK = re.compile(r'\r?\n')


class LineFramer:
    """
    Splits a stream of decoded text chunks into lines. Both "\\n" and "\\r\\n"
    terminate a line; a partial line is kept until the next chunk completes it.
    """

    def __init__(self):
        self._buffer = ""

    def feed(self, chunk: str) -> List[str]:
        """
        Adds a chunk of text and returns every line it completed.
        :param chunk: text with arbitrary boundaries
        :return: complete lines, without their terminators
        """
        self._buffer += chunk
        lines = _LINE_BREAK.split(self._buffer)
        self._buffer = lines.pop()
        return lines

    def flush(self) -> Optional[str]:
        """Returns the unterminated remainder (if any) and clears the buffer."""
        rest, self._buffer = self._buffer, ""
        return rest or None

    def reset(self) -> None:
        self._buffer = ""

    @property
    def pending(self) -> str:
        return self._buffer


def iter_lines(chunks: Iterable[str]) -> Iterator[str]:
    framer = LineFramer()
    for chunk in chunks:
        yield from framer.feed(chunk)
    rest = framer.flush()
    if rest is not None:
        yield rest
