"""
算法注册表

按 (kind, name) 登记可插拔的算法组件：
- chunker : 文本切分器，按配置 chunker_name 选择
- fetcher : 资源内容读取器，按资源类型 file/block/doc/table 选择

组件通过装饰器在模块导入时登记，app.pipeline 包导入时会加载全部内置实现：

    @register_operator("fetcher", "block")
    class BlockFetcher: ...

    fetcher = operator_registry.require("fetcher", "block")()
"""

from __future__ import annotations

from typing import Any, Callable

OPERATOR_KINDS = ("chunker", "fetcher")


class OperatorRegistry:
    """kind -> name -> 组件类"""

    def __init__(self) -> None:
        self._operators: dict[str, dict[str, Any]] = {kind: {} for kind in OPERATOR_KINDS}

    def _bucket(self, kind: str) -> dict[str, Any]:
        if kind not in self._operators:
            raise KeyError(f"未知的组件类型: {kind}")
        return self._operators[kind]

    def register(self, kind: str, name: str, op: Any) -> None:
        bucket = self._bucket(kind)
        existing = bucket.get(name)
        # 同一个类重复导入是允许的，不同实现抢占同一名称不允许
        if existing is not None and existing is not op:
            raise ValueError(f"{kind} 名称冲突: {name} 已注册为 {existing.__name__}")
        bucket[name] = op

    def get(self, kind: str, name: str) -> Any:
        """未注册返回 None"""
        return self._bucket(kind).get(name)

    def require(self, kind: str, name: str) -> Any:
        """未注册时抛出 KeyError，错误信息列出可用名称"""
        op = self.get(kind, name)
        if op is None:
            raise KeyError(f"未注册的 {kind}: {name}（可用: {', '.join(self.list(kind)) or '无'}）")
        return op

    def list(self, kind: str) -> list[str]:
        return sorted(self._bucket(kind))


operator_registry = OperatorRegistry()


def register_operator(kind: str, name: str) -> Callable[[Any], Any]:
    def wrapper(cls: Any) -> Any:
        operator_registry.register(kind, name, cls)
        return cls

    return wrapper
