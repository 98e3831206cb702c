from .collection_run import collection_run_task

__all__ = [
    "collection_run_task",
]
