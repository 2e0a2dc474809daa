"""单次 tick 的 LangGraph 状态定义。"""

from __future__ import annotations

from datetime import datetime
from operator import add
from typing import Annotated

from typing_extensions import TypedDict

from villagesim.models.economy import ResourceCrisis
from villagesim.models.event import GameEvent
from villagesim.models.resource import ResourceUpdate
from villagesim.models.village import Village


class TickState(TypedDict, total=False):
    """tick 流水线的状态。

    使用 total=False 使所有字段可选，节点只返回自己更新的字段。
    """

    # ── 输入 ──
    village: Village
    now: datetime
    delta_hours: float
    events_enabled: bool

    # ── 节点产出 ──
    season_changed: bool
    resource_updates: Annotated[list[ResourceUpdate], add]
    crises: list[ResourceCrisis]
    released_events: list[GameEvent]
    new_events: list[GameEvent]
