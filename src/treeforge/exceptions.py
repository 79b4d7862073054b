"""
Exceptions raised by the treeforge package.
"""

from enum import Enum
from typing import Optional


class TreeforgeError(Exception):
    pass


class UsageErrorKind(Enum):
    TREE_INDEX_OUT_OF_RANGE = "tree index out of range"
    DUPLICATE_KEY = "duplicate node key"
    MISSING_KEY = "missing node key"
    NODE_NOT_EMPTY = "node is not empty"
    SAME_CHILD_KEYS = "left and right child keys are equal"
    FEATURE_OUT_OF_RANGE = "feature id out of range"
    INVALID_OPERATOR = "invalid comparison operator"


class StructuralErrorKind(Enum):
    MISSING_ROOT = "missing root"
    ORPHANED_NODE = "node unreachable from root"
    DANGLING_CHILD = "child key does not exist"
    CYCLE = "cycle"
    SHARED_CHILD = "child shared by two parents"
    EMPTY_NODE = "empty node"


class UsageError(TreeforgeError):
    """
    Invalid call on the model builder. The builder is left untouched.
    """

    def __init__(self, kind: UsageErrorKind, message: str):
        self.kind = kind
        super().__init__(f"Usage error ({kind.value}): {message}")


class StructuralError(TreeforgeError):
    """
    A tree draft violates a structural invariant, detected at commit.
    """

    def __init__(
        self,
        kind: StructuralErrorKind,
        tree_index: int,
        key: Optional[int] = None,
        message: Optional[str] = None,
    ):
        self.kind = kind
        self.tree_index = tree_index
        self.key = key
        if message is None:
            message = kind.value
            if key is not None:
                message += f" (key {key})"
        super().__init__(f"Structural error in tree #{tree_index}: {message}")


class NodeKindError(TreeforgeError, AttributeError):
    """
    Raised when reading a test field from a leaf, or a leaf field from a test node.
    """


class ParseError(TreeforgeError):
    def __init__(self, message: str):
        message = f"Parse error: {message}"
        super().__init__(message)


class ConfigError(TreeforgeError):
    def __init__(self, message: str):
        message = f"Config error: {message}"
        super().__init__(message)
