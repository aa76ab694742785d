"""CLI 命令测试

测试内容：
1. archive-quests --live 归档并返回成功
2. sync-projections / reset-weekly-xp
3. 未知命令退出码为 1
"""

import sys
from datetime import UTC, datetime, timedelta

import pytest
from squadquest.core import __main__ as cli
from squadquest.core.collections import ARCHIVED_QUESTS, profile_ref, quest_ref, stats_ref
from squadquest.core.store import create_document_store


@pytest.fixture
def cli_db(tmp_path, monkeypatch) -> str:
    db_path = str(tmp_path / "cli.db")
    monkeypatch.setenv("SQUADQUEST_DB_PATH", db_path)
    return db_path


class TestCliCommands:
    async def test_archive_quests_live(self, cli_db, capsys):
        store = await create_document_store(cli_db)
        old = datetime.now(UTC) - timedelta(days=30)
        await store.set(quest_ref("CLIQUEST001"), {"status": "completed", "updatedAt": old})
        await store.close()

        assert await cli.archive_quests(live=True) is True
        assert "已归档 1 个" in capsys.readouterr().out

        store = await create_document_store(cli_db)
        try:
            assert len(await store.query(ARCHIVED_QUESTS)) == 1
        finally:
            await store.close()

    async def test_sync_and_reset(self, cli_db, capsys):
        store = await create_document_store(cli_db)
        await store.set(profile_ref("u1"), {"xp": 0, "level": 1, "thisWeekXP": 30})
        await store.set(stats_ref("u1"), {"xp": 400, "level": 3, "thisWeekXP": 30})
        await store.close()

        await cli.sync_projections()
        await cli.reset_weekly_xp()
        out = capsys.readouterr().out
        assert "修正 1 个" in out
        assert "清零 1 个" in out

        store = await create_document_store(cli_db)
        try:
            profile = await store.get(profile_ref("u1"))
            assert profile.get("xp") == 400
            assert profile.get("thisWeekXP") == 0
        finally:
            await store.close()

    def test_unknown_command(self, monkeypatch):
        monkeypatch.setattr(sys, "argv", ["squadquest", "explode"])
        with pytest.raises(SystemExit) as exc_info:
            cli.main()
        assert exc_info.value.code == 1
