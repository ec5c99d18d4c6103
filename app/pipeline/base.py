"""
Pipeline 基础类型定义

定义算法组件的抽象接口：
- BaseChunkerOperator : 文本切分器（同步）
- BaseFetcherOperator : 资源内容读取器（异步，读取产品数据表）

使用 Protocol 而非抽象基类，统一的 name/kind 属性便于注册和发现。
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol

from sqlalchemy.ext.asyncio import AsyncSession


@dataclass
class ChunkPiece:
    """
    文本片段数据结构

    切分器的输出单元，包含文本内容和元数据。
    """
    text: str
    metadata: dict = field(default_factory=dict)


@dataclass
class FetchedContent:
    """
    读取到的资源内容

    project_id / tab_id 用于父文档的作用域字段，按资源类型各填其一。
    """
    text: str
    project_id: str | None = None
    tab_id: str | None = None

    @property
    def is_empty(self) -> bool:
        return not self.text or not self.text.strip()


class BaseOperator(Protocol):
    """算法组件基础协议"""
    name: str  # 算法名称，如 "paragraph", "block"
    kind: str  # 算法类型，如 "chunker", "fetcher"


class BaseChunkerOperator(BaseOperator, Protocol):
    """
    切分器协议

    所有文本切分算法需实现此接口。
    """
    kind: str = "chunker"

    def chunk(self, text: str, metadata: dict | None = None) -> list[ChunkPiece]:
        """
        将文本切分为多个片段

        Args:
            text: 原始文本
            metadata: 附加元数据（会传递到每个片段）

        Returns:
            list[ChunkPiece]: 切分后的片段列表
        """
        ...


class BaseFetcherOperator(BaseOperator, Protocol):
    """
    资源内容读取器协议

    每种资源类型（file/block/doc/table）一个实现。
    资源不存在时返回 None，而不是抛异常。
    """
    kind: str = "fetcher"

    async def fetch(self, session: AsyncSession, resource_id: str) -> FetchedContent | None:
        """读取资源的可索引文本"""
        ...

    async def resolve_titles(self, session: AsyncSession, resource_ids: list[str]) -> dict[str, str]:
        """批量解析资源的展示标题（用于回答引用），找不到的 id 不出现在结果中"""
        ...

    async def list_ids(
        self,
        session: AsyncSession,
        workspace_id: str,
        *,
        limit: int,
        offset: int,
    ) -> list[str]:
        """分页列出工作区内该类型的全部资源 id（用于回填）"""
        ...
