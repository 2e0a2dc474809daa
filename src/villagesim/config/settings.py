"""全局配置。"""

from __future__ import annotations

from pydantic import BaseModel, Field


class ModelConfig(BaseModel):
    """内容生成 LLM 配置。"""

    provider: str = Field(
        default="google",
        description="模型提供商: 'google', 'openai', 'anthropic' 等",
    )
    model_name: str = Field(default="gemini-2.5-flash", description="模型名称")
    temperature: float = Field(default=0.8, description="生成温度")
    max_tokens: int = Field(default=2048, description="最大 token 数")
    api_key: str = Field(
        default="",
        description="模型 API key（可选，优先使用环境变量）",
    )


class SimulationConfig(BaseModel):
    """村庄模拟全局配置。"""

    content_model: ModelConfig = Field(
        default_factory=ModelConfig,
        description="事件文本生成使用的模型",
    )

    # ── 内容生成 ──
    content_timeout_seconds: float = Field(
        default=15.0, gt=0, description="单次内容生成的最长等待秒数，超时使用兜底模板"
    )
    content_max_retries: int = Field(
        default=1, ge=0, description="网络类异常的重试次数（不含首次调用）"
    )
    content_retry_delay: float = Field(default=1.0, ge=0, description="首次重试前的等待秒数")
    enable_content_cache: bool = Field(
        default=True, description="是否缓存相同提示词的生成结果"
    )

    # ── 功能开关 ──
    enable_events: bool = Field(default=True, description="是否在 tick 中生成随机事件")
    enable_seasons: bool = Field(default=True, description="是否应用季节修正")
    enable_weather: bool = Field(default=True, description="是否应用天气修正")
    enable_production_chains: bool = Field(default=True, description="是否运行加工链")

    # ── 模拟参数 ──
    tick_hours: float = Field(default=24.0, gt=0, description="每个 tick 推进的小时数")
    recent_event_window: int = Field(
        default=5, ge=0, description="生成上下文中携带的最近事件数"
    )
    history_limit: int = Field(
        default=200, ge=1, description="每个村庄保留的最大历史事件条数"
    )
    rng_seed: int | None = Field(default=None, description="随机种子；None 表示不固定")

    # ── 存储 ──
    data_dir: str = Field(default="data", description="JSON 文件存储目录")
