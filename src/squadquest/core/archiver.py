"""QuestArchiver -- 归档已完成的旧任务

每日定时执行（默认 03:00 UTC）：
1. cutoff = now - threshold_days
2. 查询 status == completed 且 updatedAt < cutoff 的任务
3. 演练模式（默认开启）只记录日志，不写任何数据
4. 正式模式按批提交：每个任务写入 archived_quests 副本 + 删除原文档，
   两个操作都计入 batch_size

单条任务处理失败记录日志后跳过；查询失败或批次提交重试耗尽则终止本次运行，
已提交的批次不回滚。
存在未结算（rewarded=False）完成凭证的任务推迟到下次运行。
"""

import asyncio
from collections.abc import Callable
from datetime import datetime, timedelta

import structlog
from pydantic import ValidationError

from .collections import QUESTS, VERIFICATIONS, archived_quest_ref, quest_ref
from .config import ArchiverConfig
from .errors import StoreError
from .models import ArchiveReport, Quest, QuestStatus
from .store import SERVER_TIMESTAMP, DocumentSnapshot, DocumentStore

log = structlog.get_logger()

# 每个任务在批次中占用的写操作数（set 副本 + delete 原文档）
OPS_PER_QUEST = 2


def seconds_until_next_run(now: datetime, run_hour: int) -> float:
    """距离下一次每日执行时刻（UTC 整点）的秒数"""
    next_run = now.replace(hour=run_hour, minute=0, second=0, microsecond=0)
    if next_run <= now:
        next_run += timedelta(days=1)
    return (next_run - now).total_seconds()


class QuestArchiver:
    """归档任务执行器"""

    def __init__(
        self,
        store: DocumentStore,
        config: ArchiverConfig | None = None,
        clock: Callable[[], datetime] | None = None,
        retry_delay_s: float = 1.0,
    ) -> None:
        self._store = store
        self._config = config or ArchiverConfig()
        self._clock = clock or store.now
        self._retry_delay_s = retry_delay_s

    @property
    def config(self) -> ArchiverConfig:
        return self._config

    async def _has_pending_verification(self, quest_id: str) -> bool:
        pending = await self._store.query(
            quest_ref(quest_id).subcollection(VERIFICATIONS),
            where=[("rewarded", "==", False)],
            limit=1,
        )
        return bool(pending)

    async def _select_candidates(
        self,
        snapshots: list[DocumentSnapshot],
        report: ArchiveReport,
    ) -> list[DocumentSnapshot]:
        candidates = []
        for snapshot in snapshots:
            try:
                quest = Quest.from_snapshot(snapshot)
                if quest.status != QuestStatus.COMPLETED:
                    raise ValueError(f"unexpected status {quest.status}")
                if await self._has_pending_verification(snapshot.id):
                    report.deferred.append(snapshot.id)
                    log.info("archive_quest_deferred", quest_id=snapshot.id, reason="pending_verification")
                    continue
            except (ValidationError, ValueError, StoreError) as e:
                report.failed.append(snapshot.id)
                log.warning(
                    "archive_quest_skipped",
                    quest_id=snapshot.id,
                    error_type=type(e).__name__,
                    error=str(e),
                )
                continue
            candidates.append(snapshot)
            report.candidates.append(snapshot.id)
        return candidates

    async def _commit_with_retry(self, chunk: list[DocumentSnapshot], batch_number: int) -> None:
        attempts = self._config.commit_attempts
        for attempt in range(1, attempts + 1):
            batch = self._store.batch()
            for snapshot in chunk:
                archived = {
                    **snapshot.to_dict(),
                    "archivedAt": SERVER_TIMESTAMP,
                    "originalCollection": QUESTS,
                }
                batch.set(archived_quest_ref(snapshot.id), archived)
                batch.delete(quest_ref(snapshot.id))
            try:
                await batch.commit()
                return
            except StoreError as e:
                log.warning(
                    "archive_batch_commit_failed",
                    batch=batch_number,
                    attempt=attempt,
                    max_attempts=attempts,
                    error=str(e),
                )
                if attempt == attempts:
                    raise
                await asyncio.sleep(self._retry_delay_s * attempt)

    async def run(self, dry_run: bool | None = None) -> ArchiveReport:
        """执行一次归档

        Args:
            dry_run: 覆盖配置中的演练模式开关

        Returns:
            ArchiveReport；fatal_error 非空表示本次运行被终止
        """
        dry_run = self._config.dry_run if dry_run is None else dry_run
        now = self._clock()
        cutoff = now - timedelta(days=self._config.threshold_days)
        report = ArchiveReport(dry_run=dry_run, cutoff=cutoff)

        log.info(
            "archive_run_started",
            dry_run=dry_run,
            cutoff=cutoff.isoformat(),
            threshold_days=self._config.threshold_days,
            batch_size=self._config.batch_size,
        )

        try:
            snapshots = await self._store.query(
                QUESTS,
                where=[("status", "==", QuestStatus.COMPLETED), ("updatedAt", "<", cutoff)],
                order_by="updatedAt",
            )
        except StoreError as e:
            report.fatal_error = str(e)
            log.error("archive_run_fatal", stage="query", error=str(e))
            return report

        report.eligible = len(snapshots)
        candidates = await self._select_candidates(snapshots, report)

        if dry_run:
            for snapshot in candidates:
                log.info(
                    "archive_dry_run_candidate",
                    quest_id=snapshot.id,
                    title=snapshot.get("title"),
                    updated_at=snapshot.get("updatedAt"),
                )
            log.info(
                "archive_run_completed",
                dry_run=True,
                eligible=report.eligible,
                would_archive=len(candidates),
                deferred=len(report.deferred),
                failed=len(report.failed),
            )
            return report

        per_batch = max(self._config.batch_size // OPS_PER_QUEST, 1)
        for start in range(0, len(candidates), per_batch):
            chunk = candidates[start : start + per_batch]
            batch_number = len(report.batch_sizes) + 1
            try:
                await self._commit_with_retry(chunk, batch_number)
            except StoreError as e:
                report.fatal_error = str(e)
                log.error(
                    "archive_run_fatal",
                    stage="commit",
                    batch=batch_number,
                    archived_so_far=len(report.archived),
                    error=str(e),
                )
                return report

            report.batch_sizes.append(len(chunk))
            report.archived.extend(snapshot.id for snapshot in chunk)
            log.info(
                "archive_batch_committed",
                batch=batch_number,
                quests=len(chunk),
                operations=len(chunk) * OPS_PER_QUEST,
            )

        log.info(
            "archive_run_completed",
            dry_run=False,
            eligible=report.eligible,
            archived=len(report.archived),
            batches=report.commits,
            deferred=len(report.deferred),
            failed=len(report.failed),
        )
        return report

    async def run_forever(self, stop: asyncio.Event) -> None:
        """每日定时执行，直到 stop 被设置

        单次运行的致命错误已记录在报告中，循环继续等待下一次执行。
        """
        log.info(
            "archiver_scheduled",
            run_hour=self._config.run_hour,
            dry_run=self._config.dry_run,
            threshold_days=self._config.threshold_days,
        )
        while not stop.is_set():
            delay = seconds_until_next_run(self._clock(), self._config.run_hour)
            try:
                await asyncio.wait_for(stop.wait(), timeout=delay)
            except TimeoutError:
                await self.run()
        log.info("archiver_stopped")
