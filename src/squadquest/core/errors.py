"""领域异常体系

每个异常带稳定的 code（供 HTTP 层映射状态码）和 recoverable 标记：
- recoverable=False: 逻辑/校验错误，客户端不应自动重试
- recoverable=True: 存储暂不可用或事务冲突耗尽，可退避重试
"""


class SquadQuestError(Exception):
    """SquadQuest 基础异常"""

    code = "INTERNAL_ERROR"

    def __init__(self, message: str, recoverable: bool = False) -> None:
        """
        Args:
            message: 错误描述
            recoverable: 是否可通过重试恢复
        """
        super().__init__(message)
        self.message = message
        self.recoverable = recoverable


class ValidationFailedError(SquadQuestError):
    """输入校验失败（事务开始前拒绝）"""

    code = "VALIDATION_FAILED"

    def __init__(self, message: str, details: list[dict] | None = None) -> None:
        super().__init__(message)
        self.details = details or []


class AuthenticationRequiredError(SquadQuestError):
    code = "UNAUTHORIZED"

    def __init__(self, message: str = "Unauthorized: No token provided") -> None:
        super().__init__(message)


class InvalidTokenError(SquadQuestError):
    code = "INVALID_TOKEN"

    def __init__(self, message: str = "Unauthorized: Invalid or expired token") -> None:
        super().__init__(message)


class QuestNotFoundError(SquadQuestError):
    code = "QUEST_NOT_FOUND"

    def __init__(self, quest_id: str) -> None:
        super().__init__(f"Quest {quest_id} does not exist")
        self.quest_id = quest_id


class UserNotFoundError(SquadQuestError):
    code = "USER_NOT_FOUND"

    def __init__(self, user_id: str) -> None:
        super().__init__(f"User {user_id} does not exist")
        self.user_id = user_id


class QuestFullError(SquadQuestError):
    code = "QUEST_FULL"

    def __init__(self, quest_id: str, max_players: int) -> None:
        super().__init__(f"Quest {quest_id} is full ({max_players} players)")
        self.quest_id = quest_id
        self.max_players = max_players


class QuestClosedError(SquadQuestError):
    """任务状态不允许该操作（非 open 时加入、已完成时退出等）"""

    code = "QUEST_CLOSED"

    def __init__(self, quest_id: str, status: str) -> None:
        super().__init__(f"Quest {quest_id} is {status}")
        self.quest_id = quest_id
        self.status = status


class InvalidCodeError(SquadQuestError):
    code = "INVALID_CODE"

    def __init__(self) -> None:
        super().__init__("Invalid secret code")


class LevelTooLowError(SquadQuestError):
    code = "LEVEL_TOO_LOW"

    def __init__(self, required_level: int, current_level: int) -> None:
        super().__init__(
            f"Clearance Denied: You need to be Level {required_level} to join this mission."
        )
        self.required_level = required_level
        self.current_level = current_level


class NotMemberError(SquadQuestError):
    code = "NOT_MEMBER"

    def __init__(self, quest_id: str, user_id: str) -> None:
        super().__init__(f"User {user_id} is not a member of quest {quest_id}")
        self.quest_id = quest_id
        self.user_id = user_id


class NotHostError(SquadQuestError):
    code = "NOT_HOST"

    def __init__(self, quest_id: str) -> None:
        super().__init__(f"Only the host can change the status of quest {quest_id}")
        self.quest_id = quest_id


class HostCannotLeaveError(SquadQuestError):
    code = "HOST_CANNOT_LEAVE"

    def __init__(self) -> None:
        super().__init__("Hosts cannot leave. You must cancel the quest.")


class InvalidTransitionError(SquadQuestError):
    code = "INVALID_TRANSITION"

    def __init__(self, from_status: str, to_status: str) -> None:
        super().__init__(f"Cannot transition from {from_status} to {to_status}")
        self.from_status = from_status
        self.to_status = to_status


class ProofMissingError(SquadQuestError):
    """结算完成奖励时找不到对应的验证记录"""

    code = "PROOF_MISSING"

    def __init__(self, quest_id: str, user_id: str) -> None:
        super().__init__(f"No completion proof for {user_id} on quest {quest_id}")


class CooldownActiveError(SquadQuestError):
    code = "COOLDOWN_ACTIVE"

    def __init__(self, retry_after_s: int) -> None:
        super().__init__("Cooldown active")
        self.retry_after_s = retry_after_s


class StoreError(SquadQuestError):
    """文档存储层异常基类"""

    code = "STORE_ERROR"


class DocumentNotFoundError(StoreError):
    """update 目标文档不存在（事务整体回滚）"""

    code = "DOCUMENT_NOT_FOUND"

    def __init__(self, path: str) -> None:
        super().__init__(f"No document to update: {path}")
        self.path = path


class TransactionTooLargeError(StoreError):
    code = "TRANSACTION_TOO_LARGE"

    def __init__(self, limit: int) -> None:
        super().__init__(f"Too many writes in one commit (limit {limit})")
        self.limit = limit


class ReadAfterWriteError(StoreError):
    code = "READ_AFTER_WRITE"

    def __init__(self) -> None:
        super().__init__("Transactions require all reads to be executed before all writes")


class StoreUnavailableError(StoreError):
    """存储不可用或事务冲突重试耗尽 -- 可重试"""

    code = "STORE_UNAVAILABLE"

    def __init__(self, message: str = "Document store unavailable, try again later") -> None:
        super().__init__(message, recoverable=True)
