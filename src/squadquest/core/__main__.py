"""CLI 入口模块 -- python -m squadquest.core <command>

支持的命令：
  archive-quests [--live]  执行一次归档（默认按 DRY_RUN 配置，--live 强制正式模式）
  sync-projections         同步所有用户的公开资料投影
  reset-weekly-xp          强制清零本周 XP
"""

import asyncio
import sys

from .config import get_db_path, load_archiver_config

USAGE = """用法: python -m squadquest.core <command>
命令:
  archive-quests [--live]  执行一次归档
  sync-projections         同步所有用户的公开资料投影
  reset-weekly-xp          强制清零本周 XP"""


def main() -> None:
    """CLI 主入口"""
    if len(sys.argv) < 2:
        print(USAGE)
        sys.exit(1)

    command = sys.argv[1]

    if command == "archive-quests":
        live = "--live" in sys.argv[2:]
        ok = asyncio.run(archive_quests(live))
        sys.exit(0 if ok else 1)
    elif command == "sync-projections":
        asyncio.run(sync_projections())
    elif command == "reset-weekly-xp":
        asyncio.run(reset_weekly_xp())
    else:
        print(f"未知命令: {command}")
        print("可用命令: archive-quests, sync-projections, reset-weekly-xp")
        sys.exit(1)


async def archive_quests(live: bool) -> bool:
    """执行一次归档，返回是否成功完成"""
    from .archiver import QuestArchiver
    from .store import create_document_store

    db_path = get_db_path()
    config = load_archiver_config()
    dry_run = False if live else config.dry_run

    print(f"数据库路径: {db_path}")
    print(f"模式: {'DRY RUN' if dry_run else 'LIVE'}，阈值 {config.threshold_days} 天")

    store = await create_document_store(db_path)
    try:
        report = await QuestArchiver(store, config).run(dry_run=dry_run)
    finally:
        await store.close()

    if dry_run:
        print(f"满足条件 {report.eligible} 个，可归档 {len(report.candidates)} 个（未写入）")
    else:
        print(f"已归档 {len(report.archived)} 个，共 {report.commits} 批")
    if report.deferred:
        print(f"推迟 {len(report.deferred)} 个（存在未结算凭证）")
    if report.failed:
        print(f"跳过 {len(report.failed)} 个: {', '.join(report.failed)}")
    if report.fatal_error:
        print(f"运行终止: {report.fatal_error}")
        return False
    return True


async def sync_projections() -> None:
    """同步所有用户的公开资料投影"""
    from .projection import sync_all
    from .store import create_document_store

    store = await create_document_store(get_db_path())
    try:
        results = await sync_all(store)
    finally:
        await store.close()

    healed = sum(1 for r in results if r.healed)
    print(f"同步完成，处理 {len(results)} 个用户，修正 {healed} 个")


async def reset_weekly_xp() -> None:
    """强制清零本周 XP"""
    from .leaderboard import WeeklyLeaderboard
    from .store import create_document_store

    store = await create_document_store(get_db_path())
    try:
        count = await WeeklyLeaderboard(store).reset_weekly_xp(force=True)
    finally:
        await store.close()

    print(f"重置完成，清零 {count} 个用户")


if __name__ == "__main__":
    main()
