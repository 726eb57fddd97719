"""Audit sinks"""
from .logging_sink import LoggingAuditSink
from .memory_sink import InMemoryAuditSink
from .composite import CompositeAuditSink
from .redis_sink import RedisAuditSink

__all__ = ["LoggingAuditSink", "InMemoryAuditSink", "CompositeAuditSink", "RedisAuditSink"]
