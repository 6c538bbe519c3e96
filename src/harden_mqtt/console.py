"""Operator prompts.  Each prompt echoes its default and accepts it on empty input."""

from __future__ import annotations

from typing import Callable

Prompt = Callable[[str], str]


def user_input(label: str, default: str = "", prompt: Prompt = input) -> str:
    text = label
    if default:
        text += f" (default: {default})"
    value = prompt(text + ": ").strip()
    return value or default


def user_input_bool(label: str, default: bool, prompt: Prompt = input) -> bool:
    while True:
        value = user_input(label, str(default), prompt).lower()
        if value in ("true", "yes"):
            return True
        if value in ("false", "no"):
            return False


def user_input_int(
    label: str, default: int, minimum: int, maximum: int, prompt: Prompt = input
) -> int:
    while True:
        value = user_input(label, str(default), prompt)
        try:
            result = int(value)
        except ValueError:
            continue
        if minimum <= result <= maximum:
            return result
