"""Pipeline repositories"""
from .memory_repository import InMemoryPipelineRepository
from .supabase_repository import SupabasePipelineRepository

__all__ = ["InMemoryPipelineRepository", "SupabasePipelineRepository"]
