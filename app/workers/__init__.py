"""
后台 worker

- indexing_worker: 轮询 indexing_jobs 队列并索引资源
"""
