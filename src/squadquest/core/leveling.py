"""等级曲线 -- 等级是 XP 的纯函数

升到下一级所需 XP：needed(level) = 100 + (level - 1) * 50
  Level 1 -> 2: 100 XP
  Level 2 -> 3: 150 XP
  Level 3 -> 4: 200 XP

存储中的 level 字段只是缓存，读取方应始终以 level_from_xp(xp) 为准。
"""

from pydantic import BaseModel


class LevelProgress(BaseModel):
    """等级进度"""

    level: int
    xp_into_level: int
    xp_for_next_level: int


def xp_needed_for_level(level: int) -> int:
    """从 level 升到 level + 1 所需 XP"""
    if level < 1:
        return 100
    return 100 + (level - 1) * 50


def level_from_xp(total_xp: int) -> LevelProgress:
    """根据累计 XP 计算等级进度（负数按 0 处理）"""
    level = 1
    remaining = max(total_xp, 0)
    needed = xp_needed_for_level(level)

    while remaining >= needed:
        remaining -= needed
        level += 1
        needed = xp_needed_for_level(level)

    return LevelProgress(level=level, xp_into_level=remaining, xp_for_next_level=needed)


def level_for(total_xp: int) -> int:
    return level_from_xp(total_xp).level
