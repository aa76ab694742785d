"""Bearer token 认证

token 格式：<uid>.<hex HMAC-SHA256(secret, uid)>
- 缺少 Authorization 头：401 UNAUTHORIZED
- 签名不匹配或格式错误：403 INVALID_TOKEN
"""

import hashlib
import hmac

from fastapi import Request
from squadquest.core.errors import AuthenticationRequiredError, InvalidTokenError


def _sign(secret: str, user_id: str) -> str:
    return hmac.new(secret.encode(), user_id.encode(), hashlib.sha256).hexdigest()


def issue_token(secret: str, user_id: str) -> str:
    """签发 token（供运维脚本与测试使用）"""
    return f"{user_id}.{_sign(secret, user_id)}"


def verify_token(secret: str, token: str) -> str:
    """校验 token，返回 uid

    Raises:
        InvalidTokenError: 格式错误或签名不匹配
    """
    user_id, sep, signature = token.rpartition(".")
    if not sep or not user_id or not signature:
        raise InvalidTokenError()
    if not hmac.compare_digest(_sign(secret, user_id), signature):
        raise InvalidTokenError()
    return user_id


def get_current_user(request: Request) -> str:
    """FastAPI 依赖：从 Authorization 头解析当前用户 uid"""
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise AuthenticationRequiredError()

    user_id = verify_token(request.app.state.auth_secret, token.strip())
    request.state.user_id = user_id
    return user_id
