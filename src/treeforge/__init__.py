from treeforge.exceptions import (
    ConfigError,
    NodeKindError,
    ParseError,
    StructuralError,
    StructuralErrorKind,
    TreeforgeError,
    UsageError,
    UsageErrorKind,
)
from treeforge.frontend import ModelBuilder, NodeState, load_model
from treeforge.model import Ensemble, Node, Operator, Tree

__version__ = "0.1.0"
