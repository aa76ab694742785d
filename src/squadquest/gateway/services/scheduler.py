"""ArchiverScheduler -- 在服务进程内托管每日归档任务

由 lifespan 启动与停止；停止时设置事件并等待后台 task 退出。
"""

import asyncio

import structlog
from squadquest.core.archiver import QuestArchiver

log = structlog.get_logger()


class ArchiverScheduler:
    """归档任务调度器"""

    def __init__(self, archiver: QuestArchiver) -> None:
        self._archiver = archiver
        self._stop = asyncio.Event()
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._task = asyncio.create_task(
            self._archiver.run_forever(self._stop),
            name="quest-archiver",
        )
        log.info("archiver_scheduler_started", run_hour=self._archiver.config.run_hour)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._stop.set()
        await self._task
        self._task = None
        log.info("archiver_scheduler_stopped")
