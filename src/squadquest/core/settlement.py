"""RewardSettlementEngine -- XP / 等级结算

一次结算（完成奖励、vibe check、每日悬赏）对应一个文档存储事务：
先读取所有涉及的用户文档，再写入新的 XP 与等级，任一写入失败则全部回滚。

两种写法并存：
- XP / level / reliability 这类派生值：事务内读取后计算再写入
- thisWeekXP / feedbackCounts.<tag> / questsCompleted 这类计数器：Increment 原子累加
"""

import math
from collections import Counter
from collections.abc import Callable, Mapping, Sequence
from datetime import UTC, datetime, timedelta

import structlog

from .activity import record_activity
from .collections import (
    member_ref,
    profile_ref,
    quest_ref,
    stats_ref,
    verification_ref,
    vibe_check_ref,
)
from .config import MAX_REVIEWED_USERS, MAX_TAGS_PER_USER, SettlementPolicy
from .errors import (
    CooldownActiveError,
    NotMemberError,
    ProofMissingError,
    QuestNotFoundError,
    UserNotFoundError,
    ValidationFailedError,
)
from .leveling import level_for
from .models import (
    TAG_BADGES,
    ActivityType,
    Badge,
    BountyResult,
    CompletionBonus,
    FinalizeResult,
    Quest,
    UserStats,
    Verification,
    VibeCheckResult,
    VibeTag,
    display_name,
    resolve_user_stats,
)
from .store import SERVER_TIMESTAMP, ArrayUnion, DocumentStore, Increment, Transaction

log = structlog.get_logger()

# 每日悬赏
BOUNTY_COOLDOWN = timedelta(hours=25)
BOUNTY_STREAK_WINDOW = timedelta(hours=48)
BOUNTY_BASE_XP = 50
BOUNTY_STREAK_STEP = 0.05
BOUNTY_MAX_XP = 150
STREAK_FREEZE_ITEM = "streak_freeze"

# 准时加成窗口：开始前 15 分钟到开始后 5 分钟
PUNCTUALITY_EARLY_MINUTES = 15
PUNCTUALITY_LATE_MINUTES = 5


def bounty_reward(streak: int) -> int:
    """悬赏奖励：50 XP 基础，每天连胜 +5%，封顶 150"""
    return min(math.floor(BOUNTY_BASE_XP * (1 + BOUNTY_STREAK_STEP * streak)), BOUNTY_MAX_XP)


def _xp_payload(new_xp: int, reward: int) -> dict:
    return {
        "xp": new_xp,
        "level": level_for(new_xp),
        "thisWeekXP": Increment(reward),
        "updatedAt": SERVER_TIMESTAMP,
    }


class RewardSettlementEngine:
    """奖励结算引擎"""

    def __init__(
        self,
        store: DocumentStore,
        policy: SettlementPolicy | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._policy = policy or SettlementPolicy()
        self._clock = clock or store.now

    # ---- vibe check ----

    def _normalize_reviews(
        self,
        reviewer_id: str,
        reviews: Mapping[str, Sequence[str]],
    ) -> dict[str, list[VibeTag]]:
        """事务开始前的输入校验：人数 / 标签上限、标签枚举；丢弃自评与空标签"""
        if len(reviews) > MAX_REVIEWED_USERS:
            raise ValidationFailedError(
                f"At most {MAX_REVIEWED_USERS} users can be reviewed at once",
                details=[{"field": "reviews", "message": f"max {MAX_REVIEWED_USERS} users"}],
            )

        normalized: dict[str, list[VibeTag]] = {}
        for user_id, tags in reviews.items():
            if len(tags) > MAX_TAGS_PER_USER:
                raise ValidationFailedError(
                    f"At most {MAX_TAGS_PER_USER} tags per user",
                    details=[{"field": f"reviews.{user_id}", "message": f"max {MAX_TAGS_PER_USER} tags"}],
                )
            try:
                parsed = [VibeTag(tag) for tag in tags]
            except ValueError as e:
                raise ValidationFailedError(
                    f"Unknown vibe tag for {user_id}",
                    details=[{"field": f"reviews.{user_id}", "message": str(e)}],
                ) from e

            # 自评与空标签静默丢弃
            if user_id == reviewer_id or not parsed:
                continue
            normalized[user_id] = parsed
        return normalized

    async def settle_vibe_check(
        self,
        quest_id: str,
        reviewer_id: str,
        reviews: Mapping[str, Sequence[str]],
    ) -> VibeCheckResult:
        """结算一次 vibe check

        每个被评价者获得 len(tags) * per_tag_xp，评价者获得 reviewer_bonus。
        同一 (quest, reviewer) 只结算一次，重复提交返回 already_submitted。
        任一被评价者资料缺失则整次结算回滚。
        """
        entries = self._normalize_reviews(reviewer_id, reviews)
        reviewed_ids = list(entries)
        per_tag_xp = self._policy.per_tag_xp
        bonus = self._policy.reviewer_bonus
        threshold = self._policy.badge_threshold

        async def body(txn: Transaction) -> tuple[VibeCheckResult, dict[str, str], str]:
            refs = [
                quest_ref(quest_id),
                member_ref(quest_id, reviewer_id),
                vibe_check_ref(quest_id, reviewer_id),
                profile_ref(reviewer_id),
                stats_ref(reviewer_id),
            ]
            for user_id in reviewed_ids:
                refs.extend([profile_ref(user_id), stats_ref(user_id)])
            snapshots = await txn.get_all(refs)
            quest_snap, reviewer_member, guard, reviewer_profile, reviewer_stats = snapshots[:5]

            if not quest_snap.exists:
                raise QuestNotFoundError(quest_id)
            if guard.exists:
                prior = VibeCheckResult(
                    quest_id=quest_id,
                    already_submitted=True,
                    earned_xp=0,
                )
                return prior, {}, ""
            if not reviewer_member.exists:
                raise NotMemberError(quest_id, reviewer_id)
            if not reviewer_profile.exists:
                raise UserNotFoundError(reviewer_id)

            result = VibeCheckResult(quest_id=quest_id, earned_xp=bonus)
            names: dict[str, str] = {}

            reviewed_snaps = snapshots[5:]
            for index, user_id in enumerate(reviewed_ids):
                profile_snap = reviewed_snaps[2 * index]
                stats_snap = reviewed_snaps[2 * index + 1]
                if not profile_snap.exists:
                    raise UserNotFoundError(user_id)

                current = resolve_user_stats(profile_snap, stats_snap)
                tag_counts = Counter(entries[user_id])
                reward = len(entries[user_id]) * per_tag_xp
                payload = _xp_payload(current.xp + reward, reward)

                unlocked = [
                    TAG_BADGES[tag]
                    for tag, count in tag_counts.items()
                    if current.feedback_counts.get(tag) + count >= threshold
                    and TAG_BADGES[tag] not in current.badges
                ]
                if unlocked:
                    payload["badges"] = ArrayUnion(*unlocked)
                    result.unlocked_badges[user_id] = [str(badge) for badge in unlocked]

                stats_payload = dict(payload)
                for tag, count in tag_counts.items():
                    stats_payload[f"feedbackCounts.{tag}"] = Increment(count)

                txn.set(profile_ref(user_id), payload, merge=True)
                txn.set(stats_ref(user_id), stats_payload, merge=True)
                result.rewarded[user_id] = reward
                names[user_id] = display_name(profile_snap, "Hero")

            reviewer = resolve_user_stats(reviewer_profile, reviewer_stats)
            reviewer_payload = _xp_payload(reviewer.xp + bonus, bonus)
            txn.update(profile_ref(reviewer_id), reviewer_payload)
            txn.set(stats_ref(reviewer_id), reviewer_payload, merge=True)

            txn.set(
                vibe_check_ref(quest_id, reviewer_id),
                {
                    "reviewerId": reviewer_id,
                    "reviewed": result.rewarded,
                    "earnedXP": bonus,
                    "submittedAt": SERVER_TIMESTAMP,
                },
            )
            return result, names, display_name(reviewer_profile, "Hero")

        result, names, reviewer_name = await self._store.run_transaction(body)
        if result.already_submitted:
            log.info("vibe_check_replay_ignored", quest_id=quest_id, reviewer_id=reviewer_id)
            return result

        log.info(
            "vibe_check_settled",
            quest_id=quest_id,
            reviewer_id=reviewer_id,
            reviewed_count=len(result.rewarded),
            total_xp=sum(result.rewarded.values()) + result.earned_xp,
        )

        await record_activity(
            self._store,
            ActivityType.VIBE_CHECK,
            user_id=reviewer_id,
            user=reviewer_name,
            action="completed squad review",
            target="Vibe Check",
            earned_xp=result.earned_xp,
        )
        for user_id, badges in result.unlocked_badges.items():
            for badge in badges:
                await record_activity(
                    self._store,
                    ActivityType.BADGE,
                    user_id=user_id,
                    user=names.get(user_id, "Hero"),
                    action=f"earned {badge.replace('_', ' ')} badge",
                    target=badge,
                )
        return result

    # ---- 完成奖励 ----

    def _completion_xp(
        self,
        quest: Quest,
        user_id: str,
        verification: Verification,
        now: datetime,
    ) -> tuple[int, list[CompletionBonus]]:
        policy = self._policy
        earned = policy.completion_base_xp
        bonuses: list[CompletionBonus] = []

        if quest.start_time is not None:
            diff_minutes = (now - quest.start_time).total_seconds() / 60
            if -PUNCTUALITY_EARLY_MINUTES <= diff_minutes <= PUNCTUALITY_LATE_MINUTES:
                earned += policy.punctuality_bonus
                bonuses.append(CompletionBonus.PUNCTUALITY)

        if verification.photo_url is not None and len(verification.photo_url) > 10:
            earned += policy.photo_bonus
            bonuses.append(CompletionBonus.PHOTO_EVIDENCE)

        if quest.host_id == user_id:
            earned += policy.host_bonus
            bonuses.append(CompletionBonus.HOST_BONUS)

        # 周日（UTC）双倍
        if now.astimezone(UTC).weekday() == 6:
            earned *= 2
            bonuses.append(CompletionBonus.SHOWDOWN_SUNDAY)

        return earned, bonuses

    async def award_completion(self, quest_id: str, user_id: str) -> FinalizeResult:
        """发放完成奖励，以 verification.rewarded 保证只发一次"""

        async def body(txn: Transaction) -> tuple[FinalizeResult, str, str]:
            quest_snap, verification_snap, member_snap, profile_snap, stats_snap = await txn.get_all(
                [
                    quest_ref(quest_id),
                    verification_ref(quest_id, user_id),
                    member_ref(quest_id, user_id),
                    profile_ref(user_id),
                    stats_ref(user_id),
                ]
            )
            if not quest_snap.exists:
                raise QuestNotFoundError(quest_id)
            if not verification_snap.exists:
                raise ProofMissingError(quest_id, user_id)

            quest = Quest.from_snapshot(quest_snap)
            verification = Verification.from_snapshot(verification_snap)
            if verification.rewarded:
                prior = FinalizeResult(
                    quest_id=quest_id,
                    already_claimed=True,
                    earned_xp=verification.earned_xp or 0,
                    bonuses=verification.bonuses,
                )
                return prior, "", quest.title

            earned, bonuses = self._completion_xp(quest, user_id, verification, self._clock())
            current = resolve_user_stats(profile_snap, stats_snap)
            new_xp = current.xp + earned
            new_level = level_for(new_xp)

            new_badges = [Badge.FIRST_MISSION]
            if CompletionBonus.PUNCTUALITY in bonuses:
                new_badges.append(Badge.EARLY_BIRD)
            unlocked = [badge for badge in new_badges if badge not in current.badges]

            payload = {
                **_xp_payload(new_xp, earned),
                "reliabilityScore": min(100, current.reliability_score + 1),
                "questsCompleted": Increment(1),
            }
            if unlocked:
                payload["badges"] = ArrayUnion(*unlocked)

            txn.set(stats_ref(user_id), payload, merge=True)
            txn.set(profile_ref(user_id), payload, merge=True)
            txn.update(
                verification_ref(quest_id, user_id),
                {
                    "rewarded": True,
                    "earnedXP": earned,
                    "bonuses": [str(bonus) for bonus in bonuses],
                    "rewardedAt": SERVER_TIMESTAMP,
                },
            )

            result = FinalizeResult(
                quest_id=quest_id,
                earned_xp=earned,
                bonuses=[str(bonus) for bonus in bonuses],
                new_level=new_level,
                new_badges=[str(badge) for badge in unlocked],
            )
            name = member_snap.get("name") or display_name(profile_snap)
            return result, name, quest.title

        result, name, title = await self._store.run_transaction(body)
        if result.already_claimed:
            log.info("completion_reward_idempotent", quest_id=quest_id, user_id=user_id)
            return result

        log.info(
            "completion_rewarded",
            quest_id=quest_id,
            user_id=user_id,
            earned_xp=result.earned_xp,
            bonuses=result.bonuses,
            new_level=result.new_level,
        )
        await record_activity(
            self._store,
            ActivityType.QUEST,
            user_id=user_id,
            user=name,
            action=f"completed {title or 'a quest'}",
            target=title or "Quest",
            earned_xp=result.earned_xp,
        )
        for badge in result.new_badges:
            await record_activity(
                self._store,
                ActivityType.BADGE,
                user_id=user_id,
                user=name,
                action=f"unlocked {badge} badge",
                target=badge,
            )
        return result

    # ---- 每日悬赏 ----

    def _next_streak(self, stats: UserStats, now: datetime) -> tuple[int, bool]:
        """计算连胜：48 小时内续签 +1；超时有冻结道具则保持，否则重置为 1

        Returns:
            (新连胜天数, 是否消耗冻结道具)
        """
        if stats.last_claimed_at is None:
            return 1, False
        if now - stats.last_claimed_at <= BOUNTY_STREAK_WINDOW:
            return stats.daily_streak + 1, False
        if stats.inventory.get(STREAK_FREEZE_ITEM, 0) > 0:
            return max(stats.daily_streak, 1), True
        return 1, False

    async def claim_daily_bounty(self, user_id: str) -> BountyResult:
        """领取每日悬赏（冷却 25 小时）"""

        async def body(txn: Transaction) -> tuple[BountyResult, str]:
            stats_snap, profile_snap = await txn.get_all([stats_ref(user_id), profile_ref(user_id)])
            stats = resolve_user_stats(profile_snap, stats_snap)
            now = self._clock()

            if stats.last_claimed_at is not None:
                elapsed = now - stats.last_claimed_at
                if elapsed < BOUNTY_COOLDOWN:
                    retry_after = math.ceil((BOUNTY_COOLDOWN - elapsed).total_seconds())
                    raise CooldownActiveError(retry_after)

            streak, frozen = self._next_streak(stats, now)
            reward = bounty_reward(streak)
            payload = _xp_payload(stats.xp + reward, reward)
            stats_payload = {**payload, "dailyStreak": streak, "lastClaimedAt": now}
            if frozen:
                stats_payload[f"inventory.{STREAK_FREEZE_ITEM}"] = Increment(-1)

            txn.set(stats_ref(user_id), stats_payload, merge=True)
            txn.set(profile_ref(user_id), payload, merge=True)

            result = BountyResult(
                reward=reward,
                streak=streak,
                streak_frozen=frozen,
                next_claim_at=now + BOUNTY_COOLDOWN,
            )
            return result, display_name(profile_snap, "Hero")

        result, name = await self._store.run_transaction(body)
        log.info(
            "daily_bounty_claimed",
            user_id=user_id,
            reward=result.reward,
            streak=result.streak,
            streak_frozen=result.streak_frozen,
        )
        await record_activity(
            self._store,
            ActivityType.BOUNTY,
            user_id=user_id,
            user=name,
            action="claimed daily bounty",
            target=f"{result.reward} XP",
            earned_xp=result.reward,
        )
        return result
