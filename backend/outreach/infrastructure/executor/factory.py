"""
Action Executor Factory
"""
from typing import Dict, Type

from outreach.domain.interfaces.action_executor import ActionExecutor
from outreach.infrastructure.executor.dry_run import DryRunActionExecutor


class ExecutorFactory:
    """Factory for creating action executor instances"""

    _executors: Dict[str, Type[ActionExecutor]] = {}

    @classmethod
    def create(cls, executor_name: str) -> ActionExecutor:
        """Create executor instance"""
        if executor_name not in cls._executors:
            available = ", ".join(cls._executors.keys()) if cls._executors else "None"
            raise ValueError(f"Unknown action executor: {executor_name}. Available: {available}")
        return cls._executors[executor_name]()

    @classmethod
    def register(cls, name: str, executor_class: Type[ActionExecutor]) -> None:
        """Register an executor"""
        cls._executors[name] = executor_class

    @classmethod
    def list_executors(cls) -> list[str]:
        """List available executors"""
        return list(cls._executors.keys())


ExecutorFactory.register("dry_run", DryRunActionExecutor)
