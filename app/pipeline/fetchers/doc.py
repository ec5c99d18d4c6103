"""文档（docs）读取器：标题 + ProseMirror 正文"""

from sqlalchemy.ext.asyncio import AsyncSession

from app.pipeline.base import BaseFetcherOperator, FetchedContent
from app.pipeline.fetchers.base import SqlFetcher, extract_prosemirror_text, load_json
from app.pipeline.registry import register_operator


@register_operator("fetcher", "doc")
class DocFetcher(SqlFetcher, BaseFetcherOperator):
    name = "doc"
    table = "docs"
    title_column = "title"
    list_ids_sql = (
        "SELECT id FROM docs WHERE workspace_id = :workspace_id "
        "ORDER BY id LIMIT :limit OFFSET :offset"
    )

    async def fetch(self, session: AsyncSession, resource_id: str) -> FetchedContent | None:
        row = await self._fetch_one(
            session,
            "SELECT id, title, content FROM docs WHERE id = :id",
            id=resource_id,
        )
        if row is None:
            return None

        body = extract_prosemirror_text(load_json(row.content))
        title = f"Title: {row.title}\n\n" if row.title else ""
        return FetchedContent(text=f"{title}{body}".strip())
