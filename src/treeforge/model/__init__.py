"""
Committed, immutable model of a tree ensemble. Trees are dense node arrays with
the root at index 0.
"""

from .node import Node, Operator
from .ensemble import Ensemble, Tree
