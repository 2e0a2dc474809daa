"""事件生成与叙事使用的提示词。

每个模板是本目录下的一个 .txt，按文件名（不带后缀）引用。
占位符用 str.format 语法，模板里的字面量花括号写作 {{ }}。
"""

from __future__ import annotations

import functools
from pathlib import Path

TEMPLATE_DIR = Path(__file__).parent


@functools.lru_cache(maxsize=None)
def load_prompt(name: str) -> str:
    """读取模板原文。

    Raises:
        FileNotFoundError: 没有名为 name 的模板。
    """
    path = TEMPLATE_DIR / f"{name.removesuffix('.txt')}.txt"
    return path.read_text(encoding="utf-8").strip()


def format_prompt(name: str, **values: str) -> str:
    """读取模板并填入占位符。"""
    return load_prompt(name).format(**values)


__all__ = ["TEMPLATE_DIR", "load_prompt", "format_prompt"]
