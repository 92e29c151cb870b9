"""Background workers.

Workers:
- ErasureWorker: runs erasure jobs as asyncio tasks, resumes interrupted
  jobs at startup and drains on shutdown
"""

from src.workers.erasure_worker import ErasureWorker

__all__: list[str] = ["ErasureWorker"]
