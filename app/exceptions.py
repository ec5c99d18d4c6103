class EmbeddingError(Exception):
    """向量化错误"""


class LLMError(Exception):
    """LLM 调用错误"""


class JobQueueError(Exception):
    """索引任务队列错误"""


class ContentFetchError(Exception):
    """资源内容读取错误"""


class IndexingError(Exception):
    """资源索引错误"""


class SearchError(Exception):
    """检索错误"""


class SimilaritySearchUnavailable(SearchError):
    """数据库端相似度检索函数不可用（未部署或调用失败）"""
