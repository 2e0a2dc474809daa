"""模型调用的重试，以及对生成文本的宽容解析。

生成结果可能是 JSON，也可能是一段散文；解析失败不抛给引擎，
由调用方落到兜底模板或把原文当作描述。
"""

from __future__ import annotations

import json
import logging
import re
import time
from typing import Any

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import BaseMessage

logger = logging.getLogger(__name__)

# ConnectionError 是 OSError 的子类
RETRYABLE_ERRORS = (OSError, TimeoutError)

DESCRIPTION_LIMIT = 500

_FENCE_RE = re.compile(r"```[A-Za-z]*[ \t]*\n?(.*?)```", re.DOTALL)


def invoke_with_retry(
    model: BaseChatModel,
    messages: list[BaseMessage],
    max_retries: int = 1,
    base_delay: float = 1.0,
    label: str = "invoke",
) -> BaseMessage:
    """调用模型；网络类错误最多重试 max_retries 次，等待时间逐次翻倍。"""
    attempt = 0
    while True:
        try:
            return model.invoke(messages)
        except RETRYABLE_ERRORS as e:
            if attempt >= max_retries:
                logger.error("%s: 已重试 %d 次，放弃 (%s)", label, attempt, e)
                raise
            wait = base_delay * 2**attempt
            attempt += 1
            logger.warning(
                "%s: %s，%.1f 秒后第 %d 次重试", label, type(e).__name__, wait, attempt
            )
            time.sleep(wait)


def message_text(message: BaseMessage) -> str:
    """取出消息里的文本。content 可能是字符串，也可能是内容块列表（Gemini）。"""
    content = message.content
    if isinstance(content, str):
        return content
    chunks = []
    for block in content:
        if isinstance(block, str):
            chunks.append(block)
        elif isinstance(block, dict) and block.get("type", "text") == "text":
            chunks.append(str(block.get("text", "")))
    return "".join(chunks)


def extract_json(text: str) -> Any:
    """找出文本中的第一个 JSON 值。

    先看 markdown 代码块；整体解析不了时，从每个 { 或 [ 处尝试解码。

    Raises:
        ValueError: 文本中没有可解析的 JSON。
    """
    fence = _FENCE_RE.search(text)
    candidate = (fence.group(1) if fence else text).strip()
    try:
        return json.loads(candidate)
    except json.JSONDecodeError:
        pass

    decoder = json.JSONDecoder()
    for match in re.finditer(r"[{\[]", candidate):
        try:
            value, _ = decoder.raw_decode(candidate, match.start())
        except json.JSONDecodeError:
            continue
        return value
    raise ValueError("生成文本中没有 JSON")


def parse_event_payload(text: str) -> dict[str, Any]:
    """事件生成结果 -> 字段字典；不是 JSON 对象时整段文本作为 description。"""
    try:
        data = extract_json(text)
    except ValueError:
        data = None
    if isinstance(data, dict):
        return data
    logger.warning("事件生成结果不是 JSON 对象，按描述文本处理")
    return {"description": text.strip()[:DESCRIPTION_LIMIT]}
