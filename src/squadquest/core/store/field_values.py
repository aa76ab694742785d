"""字段变换（在提交时基于最新已提交状态解析）

- Increment: 原子数值累加，字段不存在时从 0 开始
- ArrayUnion / ArrayRemove: 数组集合式追加 / 移除
- SERVER_TIMESTAMP: 提交时刻
- DELETE_FIELD: 删除字段

写入数据中的点分 key（如 "feedbackCounts.leader"）表示嵌套 map 路径，
只改动目标叶子字段，不整体覆盖所在 map。
"""

import copy
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import Any


@dataclass(frozen=True)
class Increment:
    amount: int | float


class ArrayUnion:
    def __init__(self, *values: Any) -> None:
        self.values = values

    def __repr__(self) -> str:
        return f"ArrayUnion{self.values!r}"


class ArrayRemove:
    def __init__(self, *values: Any) -> None:
        self.values = values

    def __repr__(self) -> str:
        return f"ArrayRemove{self.values!r}"


class _Sentinel:
    def __init__(self, name: str) -> None:
        self._name = name

    def __repr__(self) -> str:
        return self._name


SERVER_TIMESTAMP = _Sentinel("SERVER_TIMESTAMP")
DELETE_FIELD = _Sentinel("DELETE_FIELD")

_TRANSFORMS = (Increment, ArrayUnion, ArrayRemove, _Sentinel)


def to_iso(value: datetime) -> str:
    """统一的时间编码：UTC + 微秒精度，保证字符串比较与时间比较一致"""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat(timespec="microseconds")


def encode_value(value: Any) -> Any:
    """将 Python 值编码为可 JSON 序列化的存储值"""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return to_iso(value)
    if isinstance(value, dict):
        return {str(k): encode_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [encode_value(v) for v in value]
    if isinstance(value, _TRANSFORMS):
        raise ValueError(f"{value!r} must be addressed by a top-level or dotted field path")
    return value


def _resolve(current: Any, value: Any, now: datetime) -> Any:
    if isinstance(value, Increment):
        base = current if isinstance(current, (int, float)) and not isinstance(current, bool) else 0
        return base + value.amount
    if isinstance(value, ArrayUnion):
        items = list(current) if isinstance(current, list) else []
        for raw in value.values:
            encoded = encode_value(raw)
            if encoded not in items:
                items.append(encoded)
        return items
    if isinstance(value, ArrayRemove):
        removed = [encode_value(raw) for raw in value.values]
        items = list(current) if isinstance(current, list) else []
        return [item for item in items if item not in removed]
    if value is SERVER_TIMESTAMP:
        return to_iso(now)
    return encode_value(value)


def apply_changes(base: dict[str, Any], changes: dict[str, Any], now: datetime) -> dict[str, Any]:
    """把 changes 应用到 base 的副本上并返回结果

    Args:
        base: 当前已提交的文档数据（不会被修改）
        changes: 待写入字段，key 可为点分路径，value 可为字段变换
        now: SERVER_TIMESTAMP 解析使用的时间
    """
    result = copy.deepcopy(base)
    for key, value in changes.items():
        parts = key.split(".")
        parent = result
        for part in parts[:-1]:
            child = parent.get(part)
            if not isinstance(child, dict):
                child = {}
                parent[part] = child
            parent = child

        leaf = parts[-1]
        if value is DELETE_FIELD:
            parent.pop(leaf, None)
            continue
        parent[leaf] = _resolve(parent.get(leaf), value, now)
    return result
