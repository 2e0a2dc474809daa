"""内容生成协作方：把提示词发给 LLM，返回带标签的结果。

调用在工作线程中执行并限时等待。超时、异常、空响应都转换为
success=False 的 GenerationResult，由调用方换用兜底模板，绝不向上抛出。
"""

from __future__ import annotations

import json
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Any

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import HumanMessage, SystemMessage
from pydantic import BaseModel, Field

from villagesim.config.settings import SimulationConfig
from villagesim.content.parsing import invoke_with_retry, message_text
from villagesim.engine.errors import ContentGenerationError
from villagesim.prompts import format_prompt, load_prompt

logger = logging.getLogger(__name__)

# 生成类型 -> 提示词模板
PROMPT_TEMPLATES: dict[str, str] = {
    "events": "village_event_generation",
    "narrative": "village_event_narrative",
}


class GenerationOptions(BaseModel):
    timeout_seconds: float | None = Field(default=None, description="覆盖默认超时")
    use_cache: bool = True


class GenerationResult(BaseModel):
    """生成结果。success 为 False 时 content 为空、error 说明原因。"""

    success: bool
    content: str = ""
    error: str | None = None
    processing_time: float = 0.0
    cached: bool = False


class ContentGenerator:
    """基于 LangChain 聊天模型的内容生成器。

    model 为 None 时（离线 / dry-run）所有调用直接返回失败结果。
    """

    def __init__(self, model: BaseChatModel | None, config: SimulationConfig | None = None):
        self.model = model
        self.config = config or SimulationConfig()
        self._executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="content")
        self._cache: dict[str, str] = {}
        self._cache_lock = threading.Lock()

    def generate(
        self,
        prompt_kind: str,
        variables: dict[str, Any],
        options: GenerationOptions | None = None,
    ) -> GenerationResult:
        options = options or GenerationOptions()
        start = time.monotonic()

        if self.model is None:
            return GenerationResult(success=False, error="未配置内容生成模型")

        template = PROMPT_TEMPLATES.get(prompt_kind)
        if template is None:
            return GenerationResult(success=False, error=f"未知的生成类型: {prompt_kind}")

        cache_key = f"{prompt_kind}:{json.dumps(variables, sort_keys=True, ensure_ascii=False, default=str)}"
        use_cache = options.use_cache and self.config.enable_content_cache
        if use_cache:
            with self._cache_lock:
                cached = self._cache.get(cache_key)
            if cached is not None:
                return GenerationResult(
                    success=True,
                    content=cached,
                    processing_time=time.monotonic() - start,
                    cached=True,
                )

        timeout = options.timeout_seconds or self.config.content_timeout_seconds
        try:
            content = self._call_with_timeout(template, variables, timeout)
        except ContentGenerationError as e:
            logger.warning("内容生成失败 (%s): %s", prompt_kind, e)
            return GenerationResult(
                success=False, error=str(e), processing_time=time.monotonic() - start
            )

        if use_cache:
            with self._cache_lock:
                self._cache[cache_key] = content
        return GenerationResult(
            success=True, content=content, processing_time=time.monotonic() - start
        )

    def _call_with_timeout(self, template: str, variables: dict[str, Any], timeout: float) -> str:
        messages = [
            SystemMessage(content=load_prompt("system")),
            HumanMessage(
                content=format_prompt(
                    template,
                    context=json.dumps(variables, ensure_ascii=False, indent=2, default=str),
                )
            ),
        ]
        future = self._executor.submit(
            invoke_with_retry,
            self.model,
            messages,
            max_retries=self.config.content_max_retries,
            base_delay=self.config.content_retry_delay,
            label=template,
        )
        try:
            response = future.result(timeout=timeout)
        except FutureTimeoutError as e:
            future.cancel()
            raise ContentGenerationError(f"{timeout:g} 秒内未返回") from e
        except Exception as e:
            raise ContentGenerationError(f"{type(e).__name__}: {e}") from e

        text = message_text(response).strip()
        if not text:
            raise ContentGenerationError("模型返回空内容")
        return text

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)
