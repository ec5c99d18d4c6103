"""
SQLAlchemy ORM 基类定义

所有数据库模型都必须继承自这个 Base 类。
SQLAlchemy 会通过 Base.metadata 收集所有模型的表结构信息，
用于开发环境自动建表、测试环境建内存库以及 Alembic 迁移。

使用示例：
    from app.db.base import Base

    class IndexingJob(TimestampMixin, Base):
        __tablename__ = "indexing_jobs"
        id: Mapped[str] = mapped_column(String(36), primary_key=True)
"""

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """声明式基类，继承此类的模型自动注册到 Base.metadata"""
    pass
