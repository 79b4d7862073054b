"""
Ways to produce an Ensemble: the incremental ModelBuilder and the format loaders.
"""

from .builder import ModelBuilder, NodeState
from .parser import Parser, load_model, load_onnx_model
