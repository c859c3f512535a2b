from __future__ import annotations

import time
import uuid


def now_ms() -> int:
    return int(time.time() * 1000)


def new_id() -> str:
    return str(uuid.uuid4())


def truncate(text: str, width: int) -> str:
    """Cut ``text`` to ``width`` characters, ending in "...".

    Widths of 3 or less have no room for the ellipsis and get a plain cut.
    """
    # Slices code points, so multi-byte characters are never split.
    if len(text) <= width:
        return text
    if width <= 3:
        return text[:width]
    return f"{text[: width - 3]}..."
