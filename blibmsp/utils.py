import os
import time

from typing import Union


def format_duration(seconds: float) -> str:
    """Render an elapsed time like ``"12 seconds"``, ``"3 min 5 sec"`` or ``"1 hr 0 min 9 sec"``"""
    seconds = int(seconds)
    if seconds < 60:
        return f"{seconds} seconds"
    minutes, seconds = divmod(seconds, 60)
    if minutes < 60:
        return f"{minutes} min {seconds} sec"
    hours, minutes = divmod(minutes, 60)
    return f"{hours} hr {minutes} min {seconds} sec"


def timestamp(when: float=None) -> str:
    if when is None:
        when = time.time()
    return time.strftime("%Y-%m-%d %H:%M:%S", time.localtime(when))


def swap_extension(path: Union[str, os.PathLike], extension: str) -> str:
    """Replace the final extension of `path`, keeping its directory"""
    root, _ = os.path.splitext(os.fspath(path))
    return root + extension
