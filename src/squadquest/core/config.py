"""配置模块 -- 可通过环境变量覆盖

包含数据库路径、归档任务参数、结算奖励常量、退出惩罚策略等可配置项。
"""

import os
from pathlib import Path

import structlog
from pydantic import BaseModel, Field

log = structlog.get_logger()


def _get_base_dir() -> Path:
    """获取项目 data 基础目录"""
    return Path(os.environ.get("SQUADQUEST_DATA_DIR", "data"))


def get_db_path() -> str:
    """获取 SQLite 数据库路径"""
    return os.environ.get(
        "SQUADQUEST_DB_PATH",
        str(_get_base_dir() / "sqlite" / "squadquest.db"),
    )


def get_auth_secret() -> str:
    """获取 Bearer token 签名密钥"""
    return os.environ.get("SQUADQUEST_AUTH_SECRET", "squadquest-dev-secret")


def get_default_city() -> str:
    """周榜默认城市"""
    return os.environ.get("SQUADQUEST_DEFAULT_CITY", "Ahmedabad")


def _env_flag(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int | None:
    """读取整数环境变量；非法值记录警告并返回 None（调用方使用默认值）"""
    value = os.environ.get(name)
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        log.warning("invalid_int_config", env_var=name, value=value, fallback=default)
        return None


def rate_limit_enabled() -> bool:
    """是否启用请求限流"""
    return _env_flag("SQUADQUEST_RATE_LIMIT_ENABLED", True)


# 单次事务 / 批量写入的最大操作数（文档存储硬上限）
MAX_WRITES_PER_COMMIT: int = 500

# 单次 vibe check 最多评价人数、每人最多标签数
MAX_REVIEWED_USERS: int = 20
MAX_TAGS_PER_USER: int = 6

# 事务冲突（database is locked）最大重试次数
TRANSACTION_MAX_ATTEMPTS: int = 5


class ArchiverConfig(BaseModel):
    """归档任务配置

    环境变量:
        ARCHIVE_THRESHOLD_DAYS: 完成超过 N 天的任务才会归档（默认 7）
        BATCH_SIZE: 单批提交的最大写操作数（默认 450，低于存储上限 500）
        DRY_RUN: 演练模式，只记录日志不写数据（默认 true）
        SQUADQUEST_ARCHIVER_ENABLED: 是否在服务内启动每日任务（默认 true）
        SQUADQUEST_ARCHIVER_HOUR: 每日执行时刻（UTC 小时，默认 3）
    """

    threshold_days: int = Field(default=7, ge=0, description="归档阈值（天）")
    batch_size: int = Field(
        default=450,
        ge=2,
        le=MAX_WRITES_PER_COMMIT,
        description="单批写操作上限（每个任务占 2 个操作）",
    )
    dry_run: bool = Field(default=True, description="演练模式开关")
    enabled: bool = Field(default=True, description="是否启用定时归档")
    run_hour: int = Field(default=3, ge=0, le=23, description="每日执行时刻（UTC）")
    commit_attempts: int = Field(default=3, ge=1, description="单批提交最大尝试次数")


def load_archiver_config() -> ArchiverConfig:
    """从环境变量加载归档配置，非法值降级为默认值，不阻塞启动"""
    kwargs: dict = {}

    if (val := _env_int("ARCHIVE_THRESHOLD_DAYS", 7)) is not None:
        kwargs["threshold_days"] = val
    if (val := _env_int("BATCH_SIZE", 450)) is not None:
        if 2 <= val <= MAX_WRITES_PER_COMMIT:
            kwargs["batch_size"] = val
        else:
            log.warning(
                "batch_size_out_of_range",
                value=val,
                limit=MAX_WRITES_PER_COMMIT,
                fallback=450,
            )
    if (val := _env_int("SQUADQUEST_ARCHIVER_HOUR", 3)) is not None and 0 <= val <= 23:
        kwargs["run_hour"] = val

    kwargs["dry_run"] = _env_flag("DRY_RUN", True)
    kwargs["enabled"] = _env_flag("SQUADQUEST_ARCHIVER_ENABLED", True)

    return ArchiverConfig(**kwargs)


class SettlementPolicy(BaseModel):
    """结算与生命周期策略常量"""

    per_tag_xp: int = Field(default=5, ge=0, description="每个 vibe 标签奖励的 XP")
    reviewer_bonus: int = Field(default=50, ge=0, description="评价者固定奖励 XP")
    completion_base_xp: int = Field(default=100, ge=0, description="完成任务基础 XP")
    punctuality_bonus: int = Field(default=25, ge=0)
    photo_bonus: int = Field(default=20, ge=0)
    host_bonus: int = Field(default=20, ge=0)
    badge_threshold: int = Field(default=5, ge=1, description="同一标签解锁徽章所需次数")
    leave_grace_minutes: int = Field(
        default=60,
        ge=0,
        description="开始时间前后此窗口内退出会被扣可靠度",
    )
    leave_reliability_penalty: int = Field(default=2, ge=0, description="退出惩罚（百分点）")


def load_settlement_policy() -> SettlementPolicy:
    """从环境变量加载结算策略

    环境变量映射:
        SQUADQUEST_PER_TAG_XP -> per_tag_xp (默认 5)
        SQUADQUEST_REVIEWER_BONUS -> reviewer_bonus (默认 50)
        SQUADQUEST_LEAVE_GRACE_MINUTES -> leave_grace_minutes (默认 60)
        SQUADQUEST_LEAVE_RELIABILITY_PENALTY -> leave_reliability_penalty (默认 2)
    """
    kwargs: dict = {}
    env_map = {
        "SQUADQUEST_PER_TAG_XP": ("per_tag_xp", 5),
        "SQUADQUEST_REVIEWER_BONUS": ("reviewer_bonus", 50),
        "SQUADQUEST_LEAVE_GRACE_MINUTES": ("leave_grace_minutes", 60),
        "SQUADQUEST_LEAVE_RELIABILITY_PENALTY": ("leave_reliability_penalty", 2),
    }
    for env_var, (field_name, default) in env_map.items():
        val = _env_int(env_var, default)
        if val is None:
            continue
        if val < 0:
            log.warning("negative_policy_config", env_var=env_var, value=val, fallback=default)
            continue
        kwargs[field_name] = val

    return SettlementPolicy(**kwargs)
