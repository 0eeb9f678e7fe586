from __future__ import annotations

from typing import Any

from ...codec import pretty, to_bytes


def dumps_text(obj: Any) -> str:
    return pretty(obj)


def print_json(obj: Any, *, indent: bool = False) -> None:
    if indent:
        print(dumps_text(obj))
    else:
        print(to_bytes(obj).decode("utf-8"))
