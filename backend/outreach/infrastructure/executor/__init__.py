"""Action executors"""
from .dry_run import DryRunActionExecutor
from .factory import ExecutorFactory

__all__ = ["DryRunActionExecutor", "ExecutorFactory"]
