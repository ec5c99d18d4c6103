"""
API 依赖注入函数

使用示例：
    @router.post("/internal/indexing/worker")
    async def run_worker(
        _: None = Depends(require_internal_token),   # 校验内部接口 Token
        db=Depends(get_db_session),                  # 自动获取数据库会话
    ):
        pass
"""

import hmac

from fastapi import Header, HTTPException, status

from app.config import get_settings
from app.db.session import get_db


async def require_internal_token(authorization: str | None = Header(default=None)) -> None:
    """
    校验内部接口的 Bearer Token

    未配置 internal_api_token 时不校验（仅用于本地开发）。
    """
    expected = get_settings().internal_api_token
    if not expected:
        return

    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"code": "UNAUTHORIZED", "detail": "Missing bearer token"},
            headers={"WWW-Authenticate": "Bearer"},
        )

    token = authorization.split(" ", 1)[1].strip()
    if not hmac.compare_digest(token.encode(), expected.encode()):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"code": "UNAUTHORIZED", "detail": "Invalid bearer token"},
            headers={"WWW-Authenticate": "Bearer"},
        )


# 重新导出数据库会话获取函数，方便路由模块导入
get_db_session = get_db
