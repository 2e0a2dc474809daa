"""键值持久化协作方。

值必须是可 JSON 序列化的数据（dict / list / 标量）；模型由调用方
model_dump(mode="json") 后写入、model_validate 后读出。

键布局：
village:<id>                    村庄聚合
village:<id>:event_history      已解决事件历史
village:<id>:scheduled_events   排期事件
village:<id>:active_events      活跃事件（id -> 事件）
village:<id>:delayed_effects    待生效的延迟效果
village:<id>:settings           创建村庄时使用的模拟配置
"""

from __future__ import annotations

import copy
import json
import logging
import re
import threading
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

logger = logging.getLogger(__name__)


def village_key(village_id: str) -> str:
    return f"village:{village_id}"


def history_key(village_id: str) -> str:
    return f"village:{village_id}:event_history"


def scheduled_key(village_id: str) -> str:
    return f"village:{village_id}:scheduled_events"


def active_events_key(village_id: str) -> str:
    return f"village:{village_id}:active_events"


def delayed_effects_key(village_id: str) -> str:
    return f"village:{village_id}:delayed_effects"


def settings_key(village_id: str) -> str:
    return f"village:{village_id}:settings"


@runtime_checkable
class KeyValueStore(Protocol):
    """get / set / delete 三个操作。跨键不保证事务。"""

    def get(self, key: str) -> Any | None: ...

    def set(self, key: str, value: Any) -> None: ...

    def delete(self, key: str) -> None: ...


class InMemoryStore:
    """进程内存储，读写都做深拷贝，调用方拿到的数据与存储互不影响。"""

    def __init__(self) -> None:
        self._data: dict[str, Any] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Any | None:
        with self._lock:
            if key not in self._data:
                return None
            return copy.deepcopy(self._data[key])

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._data[key] = copy.deepcopy(value)

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def keys(self) -> list[str]:
        with self._lock:
            return sorted(self._data)


class JsonFileStore:
    """每个键一个 JSON 文件，供 CLI 在多次运行之间保存村庄。"""

    def __init__(self, data_dir: str | Path):
        self.root = Path(data_dir)
        self.root.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def _path(self, key: str) -> Path:
        safe = re.sub(r"[^A-Za-z0-9_.-]", "__", key)
        return self.root / f"{safe}.json"

    def get(self, key: str) -> Any | None:
        path = self._path(key)
        with self._lock:
            if not path.exists():
                return None
            return json.loads(path.read_text(encoding="utf-8"))

    def set(self, key: str, value: Any) -> None:
        path = self._path(key)
        with self._lock:
            tmp = path.with_suffix(".json.tmp")
            tmp.write_text(
                json.dumps(value, ensure_ascii=False, indent=2, default=str),
                encoding="utf-8",
            )
            tmp.replace(path)
        logger.debug("已写入 %s", path)

    def delete(self, key: str) -> None:
        with self._lock:
            self._path(key).unlink(missing_ok=True)
