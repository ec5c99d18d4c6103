"""
Workspace Search Service - 应用主包

工作区语义检索服务，包含以下子模块：
- api/       : API 路由和依赖注入
- db/        : 数据库连接和会话管理
- models/    : SQLAlchemy ORM 数据模型
- schemas/   : Pydantic 请求/响应模式
- pipeline/  : 可插拔的读取 / 切分 / 摘要算法
- services/  : 业务逻辑服务层（索引队列、索引器、检索、回答）
- workers/   : 后台索引 worker
- infra/     : 基础设施（Embedding、LLM、日志）

项目架构遵循分层设计：
    API层 → 服务层 → 数据访问层 → 基础设施层
"""
