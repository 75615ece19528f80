import os
import io
import gzip

from collections import deque
from typing import Any, Iterable, Optional, Union

DEFAULT_BUFFER_SIZE = int(2e6)
GZIP_MAGIC = b'\037\213'


class LineBuffer(object):
    """
    An implementation detail that treats a stream/iterator over line strings as LIFO
    queue that can have lines pushed back onto it.
    """

    lines: deque
    stream: io.IOBase
    last_line: str
    _stream_is_file_like: bool

    def __init__(self, stream: io.IOBase, lines: Iterable=None, last_line: str=None):
        if lines is None:
            lines = []
        self.lines = deque(lines)
        self.stream = stream
        self.last_line = last_line
        self._stream_is_file_like = hasattr(self.stream, 'readline')

    def readline(self) -> Union[bytes, str]:
        if self.lines:
            line = self.lines.popleft()
        else:
            line = self.stream.readline() if self._stream_is_file_like else next(self.stream, '')
        self.last_line = line
        return line

    def push_line(self, line=None):
        if line is None:
            line = self.last_line
            self.last_line = None
        if line is None:
            raise ValueError("Cannot push empty value after the backtrack line is consumed")
        self.lines.appendleft(line)

    def __iter__(self):
        while True:
            while self.lines:
                line = self.lines.popleft()
                self.last_line = line
                yield line
            line = self.stream.readline() if self._stream_is_file_like else next(self.stream, '')
            if not line:
                break
            self.last_line = line
            yield line


def try_cast(value: Any) -> Union[str, int, float, Any]:
    if value is None:
        return value
    if not isinstance(value, str):
        return value
    try:
        return int(value)
    except ValueError:
        pass
    try:
        return float(value)
    except ValueError:
        pass
    return value


def try_float(value: Any) -> Optional[float]:
    """Coerce `value` to :class:`float`, or return :const:`None` if it is not numeric"""
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def test_gzipped(f) -> bool:
    """
    Checks the first two bytes of the
    passed file for gzip magic numbers

    Parameters
    ----------
    f : file-like or path-like
        The file to test

    Returns
    -------
    bool
    """
    try:
        current = f.tell()
    except OSError:
        return False
    f.seek(0)
    magic = f.read(2)
    f.seek(current)
    return magic == GZIP_MAGIC


def open_stream(f: Union[io.IOBase, os.PathLike], mode='rt', buffer_size: Optional[int]=None,
                encoding: Optional[str]='utf8', newline=None):
    '''Select the file reading type for the given path or stream.

    Detects whether the file is gzip encoded.
    '''
    if buffer_size is None:
        buffer_size = DEFAULT_BUFFER_SIZE
    if 'r' not in mode:
        raise NotImplementedError("Haven't implemented automatic output stream determination")
    if hasattr(f, 'read'):
        if isinstance(f, io.TextIOBase):
            return f
        raw = f
    else:
        raw = io.open(f, 'rb')
    if not isinstance(raw, io.BufferedReader):
        buffered_reader = io.BufferedReader(raw, buffer_size)
    else:
        buffered_reader = raw
    if test_gzipped(buffered_reader):
        handle = gzip.GzipFile(fileobj=buffered_reader, mode='rb')
    else:
        handle = buffered_reader
    if "b" not in mode:
        handle = io.TextIOWrapper(handle, encoding=encoding, newline=newline)
    return handle
