"""Hierarchical folder/note tree with optimistic, rollback-safe mutations."""

from workspace_tree.cache.queries import TreeQueries
from workspace_tree.cache.query_cache import QueryCache
from workspace_tree.core.coordinator import BatchResult, MutationCoordinator
from workspace_tree.core.tree.builder import TreeBuildOptions, TreeNode, build_arena, build_tree
from workspace_tree.models.entity import CreateInput, Entity, EntityKind, StoreResult
from workspace_tree.protocols import CachePort, EntityStoreProtocol, TransportProtocol
from workspace_tree.store.adapter import EntityStoreAdapter

__all__ = [
    "BatchResult",
    "CachePort",
    "CreateInput",
    "Entity",
    "EntityKind",
    "EntityStoreAdapter",
    "EntityStoreProtocol",
    "MutationCoordinator",
    "QueryCache",
    "StoreResult",
    "TransportProtocol",
    "TreeBuildOptions",
    "TreeNode",
    "TreeQueries",
    "build_arena",
    "build_tree",
]
