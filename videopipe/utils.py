# videopipe/utils.py
import posixpath
import time
from typing import Tuple


def derived_object_names(object_name: str) -> Tuple[str, str]:
    """
    Derive the delivery video and thumbnail object names from a source path:

        videos/{video_id}/clip.mp4 -> videos/{video_id}/clip_low.mp4
                                      videos/{video_id}/clip_thumb.webp

    Both live next to the source, so distinct sources never collide.
    """
    if not object_name:
        raise ValueError("object_name is empty")

    folder, file_name = posixpath.split(object_name.strip("/"))
    stem, ext = posixpath.splitext(file_name)

    low_res = f"{stem}_low{ext}"
    thumbnail = f"{stem}_thumb.webp"
    if folder:
        low_res = f"{folder}/{low_res}"
        thumbnail = f"{folder}/{thumbnail}"
    return low_res, thumbnail


def source_extension(object_name: str) -> str:
    return posixpath.splitext(object_name)[1]


def now_millis() -> int:
    return int(time.time() * 1000)
