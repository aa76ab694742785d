"""QuestLifecycleManager -- 任务状态机与成员变更

所有成员数量敏感的变更（加入 / 退出 / 完成 / 状态流转）都在
单个文档存储事务内完成，失败时整体回滚。
事务函数内只做读写，动态流等副作用在提交之后执行。
"""

from collections.abc import Callable
from datetime import datetime, timedelta

import structlog
from ulid import ULID

from .activity import record_activity
from .collections import (
    joined_quest_ref,
    member_ref,
    profile_ref,
    quest_ref,
    stats_ref,
    verification_ref,
)
from .config import SettlementPolicy
from .errors import (
    HostCannotLeaveError,
    InvalidCodeError,
    InvalidTransitionError,
    LevelTooLowError,
    NotHostError,
    NotMemberError,
    QuestClosedError,
    QuestFullError,
    QuestNotFoundError,
    ValidationFailedError,
)
from .leveling import level_for
from .models import (
    TERMINAL_STATES,
    ActivityType,
    FinalizeResult,
    JoinResult,
    LeaveResult,
    MemberRole,
    ProofBundle,
    Quest,
    QuestMember,
    QuestStatus,
    StatusChangeResult,
    Verification,
    display_name,
    resolve_user_stats,
    validate_transition,
)
from .settlement import RewardSettlementEngine
from .store import SERVER_TIMESTAMP, ArrayRemove, ArrayUnion, DocumentStore, Transaction

log = structlog.get_logger()

# 威胁等级 -> 最低用户等级
LEVEL_REQUIREMENTS: dict[int, int] = {1: 0, 2: 10, 3: 25, 4: 40, 5: 50}


def _clamp_reliability(score: int) -> int:
    return max(0, min(100, score))


class QuestLifecycleManager:
    """任务生命周期管理器"""

    def __init__(
        self,
        store: DocumentStore,
        policy: SettlementPolicy | None = None,
        settlement: RewardSettlementEngine | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._policy = policy or SettlementPolicy()
        self._clock = clock or store.now
        self._settlement = settlement or RewardSettlementEngine(
            store, policy=self._policy, clock=self._clock
        )

    async def create_quest(
        self,
        host_id: str,
        title: str,
        start_time: datetime,
        max_players: int = 5,
        difficulty: int = 1,
        is_private: bool = False,
        secret_code: str | None = None,
        city: str | None = None,
    ) -> Quest:
        """创建任务：发起人作为首个成员，同一事务内写入成员记录"""
        if is_private and not secret_code:
            raise ValidationFailedError(
                "Private quests require a secret code",
                details=[{"field": "secretCode", "message": "required for private quests"}],
            )

        quest_id = str(ULID())
        now = self._clock()
        quest = Quest(
            quest_id=quest_id,
            title=title,
            status=QuestStatus.OPEN,
            start_time=start_time,
            max_players=max_players,
            members=[host_id],
            host_id=host_id,
            is_private=is_private,
            secret_code=secret_code if is_private else None,
            difficulty=difficulty,
            city=city,
            created_at=now,
            updated_at=now,
        )

        async def body(txn: Transaction) -> str:
            profile = await txn.get(profile_ref(host_id))
            host_name = display_name(profile)

            txn.set(quest_ref(quest_id), quest.to_document())
            member = QuestMember(uid=host_id, name=host_name, role=MemberRole.HOST)
            txn.set(member_ref(quest_id, host_id), {**member.to_document(), "joinedAt": SERVER_TIMESTAMP})
            txn.set(
                joined_quest_ref(host_id, quest_id),
                {"joinedAt": SERVER_TIMESTAMP, "role": MemberRole.HOST, "title": title},
            )
            return host_name

        host_name = await self._store.run_transaction(body)

        log.info("quest_created", quest_id=quest_id, host_id=host_id, max_players=max_players)
        await record_activity(
            self._store,
            ActivityType.QUEST_CREATED,
            user_id=host_id,
            user=host_name,
            action=f"created {title}",
            target=title,
        )
        return quest

    async def get_quest(self, quest_id: str) -> Quest:
        """读取任务；已过开始时间的 open 任务会顺带激活"""
        quest, _ = await self.activate_if_due(quest_id)
        return quest

    async def activate_if_due(self, quest_id: str) -> tuple[Quest, bool]:
        """open 且已过开始时间的任务置为 active

        幂等：已是 active 或尚未到开始时间时不写入。

        Returns:
            (最新的 Quest, 本次是否发生了激活)
        """

        async def body(txn: Transaction) -> tuple[Quest, bool]:
            snapshot = await txn.get(quest_ref(quest_id))
            if not snapshot.exists:
                raise QuestNotFoundError(quest_id)
            quest = Quest.from_snapshot(snapshot)
            if not quest.is_due(self._clock()):
                return quest, False

            txn.update(
                quest_ref(quest_id),
                {"status": QuestStatus.ACTIVE, "updatedAt": SERVER_TIMESTAMP},
            )
            return quest.model_copy(update={"status": QuestStatus.ACTIVE}), True

        quest, activated = await self._store.run_transaction(body)
        if activated:
            log.info("quest_auto_activated", quest_id=quest_id)
        return quest, activated

    async def join(self, quest_id: str, user_id: str, code: str | None = None) -> JoinResult:
        """加入任务

        检查顺序：任务存在 -> 已是成员（幂等成功）-> 状态 open -> 容量
        -> 私密房间码（发起人豁免）-> 等级门槛。
        """

        async def body(txn: Transaction) -> tuple[JoinResult, str, str]:
            quest_snap, member_snap, profile_snap, stats_snap = await txn.get_all(
                [
                    quest_ref(quest_id),
                    member_ref(quest_id, user_id),
                    profile_ref(user_id),
                    stats_ref(user_id),
                ]
            )
            if not quest_snap.exists:
                raise QuestNotFoundError(quest_id)
            quest = Quest.from_snapshot(quest_snap)

            if member_snap.exists or quest.is_member(user_id):
                result = JoinResult(
                    quest_id=quest_id,
                    already_member=True,
                    member_count=len(quest.members),
                    max_players=quest.max_players,
                )
                return result, "", quest.title

            status = quest.effective_status(self._clock())
            if status != QuestStatus.OPEN:
                raise QuestClosedError(quest_id, status)
            if quest.is_full:
                raise QuestFullError(quest_id, quest.max_players)
            if quest.is_private and user_id != quest.host_id and code != quest.secret_code:
                raise InvalidCodeError()

            required_level = LEVEL_REQUIREMENTS.get(quest.difficulty, 0)
            current_level = level_for(resolve_user_stats(profile_snap, stats_snap).xp)
            if current_level < required_level:
                raise LevelTooLowError(required_level, current_level)

            name = display_name(profile_snap)
            txn.update(
                quest_ref(quest_id),
                {"members": ArrayUnion(user_id), "updatedAt": SERVER_TIMESTAMP},
            )
            member = QuestMember(uid=user_id, name=name, role=MemberRole.MEMBER)
            txn.set(member_ref(quest_id, user_id), {**member.to_document(), "joinedAt": SERVER_TIMESTAMP})
            txn.set(
                joined_quest_ref(user_id, quest_id),
                {"joinedAt": SERVER_TIMESTAMP, "role": MemberRole.MEMBER, "title": quest.title},
            )

            result = JoinResult(
                quest_id=quest_id,
                member_count=len(quest.members) + 1,
                max_players=quest.max_players,
            )
            return result, name, quest.title

        result, name, title = await self._store.run_transaction(body)
        if result.already_member:
            log.info("quest_join_idempotent", quest_id=quest_id, user_id=user_id)
            return result

        log.info(
            "quest_joined",
            quest_id=quest_id,
            user_id=user_id,
            member_count=result.member_count,
            max_players=result.max_players,
        )
        await record_activity(
            self._store,
            ActivityType.HERO_JOINED,
            user_id=user_id,
            user=name,
            action=f"joined {title}",
            target=title,
        )
        return result

    async def leave(self, quest_id: str, user_id: str) -> LeaveResult:
        """退出任务

        开始时间前后 leave_grace_minutes 内退出，两份用户文档的可靠度
        同时扣除 leave_reliability_penalty（夹在 0..100）。
        """
        grace = timedelta(minutes=self._policy.leave_grace_minutes)
        penalty = self._policy.leave_reliability_penalty

        async def body(txn: Transaction) -> LeaveResult:
            quest_snap, member_snap, profile_snap, stats_snap = await txn.get_all(
                [
                    quest_ref(quest_id),
                    member_ref(quest_id, user_id),
                    profile_ref(user_id),
                    stats_ref(user_id),
                ]
            )
            if not quest_snap.exists:
                raise QuestNotFoundError(quest_id)
            quest = Quest.from_snapshot(quest_snap)

            if not member_snap.exists and not quest.is_member(user_id):
                raise NotMemberError(quest_id, user_id)
            if user_id == quest.host_id:
                raise HostCannotLeaveError()
            if quest.status in TERMINAL_STATES:
                raise QuestClosedError(quest_id, quest.status)

            txn.update(
                quest_ref(quest_id),
                {"members": ArrayRemove(user_id), "updatedAt": SERVER_TIMESTAMP},
            )
            txn.delete(member_ref(quest_id, user_id))
            txn.delete(joined_quest_ref(user_id, quest_id))

            now = self._clock()
            late = quest.start_time is not None and abs(quest.start_time - now) <= grace
            if not late or penalty == 0:
                return LeaveResult(quest_id=quest_id)

            current = resolve_user_stats(profile_snap, stats_snap)
            new_score = _clamp_reliability(current.reliability_score - penalty)
            payload = {"reliabilityScore": new_score, "updatedAt": SERVER_TIMESTAMP}
            if stats_snap.exists:
                txn.update(stats_ref(user_id), payload)
            else:
                # 只有公开资料的用户：以完整记录建立私有文档
                txn.set(stats_ref(user_id), {**current.to_document(), **payload})
            if profile_snap.exists:
                txn.update(profile_ref(user_id), payload)

            return LeaveResult(
                quest_id=quest_id,
                reliability_penalty=current.reliability_score - new_score,
                reliability_score=new_score,
            )

        result = await self._store.run_transaction(body)
        log.info(
            "quest_left",
            quest_id=quest_id,
            user_id=user_id,
            reliability_penalty=result.reliability_penalty,
        )
        return result

    async def finalize(self, quest_id: str, user_id: str, proof: ProofBundle) -> FinalizeResult:
        """提交完成凭证

        第一个事务写入 verifications/{uid}（completed=True, rewarded=False）
        并把用户加入 completedBy；XP 发放交给结算引擎，由 rewarded 标记保证只发一次。
        """
        if not proof.has_evidence:
            raise ValidationFailedError(
                "Completion proof requires a location match or a photo",
                details=[{"field": "proof", "message": "locationMatch or photoURL required"}],
            )

        async def body(txn: Transaction) -> FinalizeResult | None:
            quest_snap, member_snap, verification_snap = await txn.get_all(
                [
                    quest_ref(quest_id),
                    member_ref(quest_id, user_id),
                    verification_ref(quest_id, user_id),
                ]
            )
            if not quest_snap.exists:
                raise QuestNotFoundError(quest_id)
            quest = Quest.from_snapshot(quest_snap)

            if not member_snap.exists and not quest.is_member(user_id):
                raise NotMemberError(quest_id, user_id)

            if verification_snap.exists:
                verification = Verification.from_snapshot(verification_snap)
                if verification.rewarded:
                    return FinalizeResult(
                        quest_id=quest_id,
                        already_claimed=True,
                        earned_xp=verification.earned_xp or 0,
                        bonuses=verification.bonuses,
                    )
                # 凭证已写入但奖励未结算：直接进入结算
                return None

            if quest.status == QuestStatus.CANCELLED:
                raise QuestClosedError(quest_id, quest.status)

            verification = Verification(
                user_id=user_id,
                completed=True,
                rewarded=False,
                location_match=proof.location_match,
                photo_url=proof.photo_url,
            )
            txn.set(
                verification_ref(quest_id, user_id),
                {**verification.to_document(), "submittedAt": SERVER_TIMESTAMP},
            )
            txn.update(
                quest_ref(quest_id),
                {"completedBy": ArrayUnion(user_id), "updatedAt": SERVER_TIMESTAMP},
            )
            return None

        prior = await self._store.run_transaction(body)
        if prior is not None:
            log.info("quest_finalize_idempotent", quest_id=quest_id, user_id=user_id)
            return prior

        log.info("quest_verification_recorded", quest_id=quest_id, user_id=user_id)
        return await self._settlement.award_completion(quest_id, user_id)

    async def transition(self, quest_id: str, actor_id: str, to_status: QuestStatus) -> StatusChangeResult:
        """发起人手动变更任务状态，只允许 VALID_TRANSITIONS 中的流转"""

        async def body(txn: Transaction) -> StatusChangeResult:
            snapshot = await txn.get(quest_ref(quest_id))
            if not snapshot.exists:
                raise QuestNotFoundError(quest_id)
            quest = Quest.from_snapshot(snapshot)
            if actor_id != quest.host_id:
                raise NotHostError(quest_id)

            current = quest.effective_status(self._clock())
            if current == to_status:
                if quest.status != current:
                    txn.update(quest_ref(quest_id), {"status": current, "updatedAt": SERVER_TIMESTAMP})
                return StatusChangeResult(quest_id=quest_id, from_status=current, status=current)
            if not validate_transition(current, to_status):
                raise InvalidTransitionError(current, to_status)

            txn.update(quest_ref(quest_id), {"status": to_status, "updatedAt": SERVER_TIMESTAMP})
            return StatusChangeResult(quest_id=quest_id, from_status=current, status=to_status)

        result = await self._store.run_transaction(body)
        log.info(
            "quest_status_changed",
            quest_id=quest_id,
            actor_id=actor_id,
            from_status=result.from_status,
            to_status=result.status,
        )
        return result
