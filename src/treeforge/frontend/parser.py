import logging
from collections import defaultdict
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Union

import numpy as np
import onnx

from treeforge.exceptions import ParseError, StructuralError, UsageError
from treeforge.frontend.builder import ModelBuilder
from treeforge.model import Ensemble, Operator

logger = logging.getLogger(__name__)

ONNX_MODES = {
    "BRANCH_EQ": Operator.EQ,
    "BRANCH_LT": Operator.LT,
    "BRANCH_LEQ": Operator.LE,
    "BRANCH_GT": Operator.GT,
    "BRANCH_GTE": Operator.GE,
}


def _as_str(value: Union[bytes, str]) -> str:
    return value.decode() if isinstance(value, bytes) else value


# https://onnx.ai/onnx/operators/onnx_aionnxml_TreeEnsembleRegressor.html
class Parser:
    """
    A parser class to read an onnx model and turn its tree ensemble op into an
    Ensemble. Nodes are fed to a ModelBuilder using the onnx node ids as keys.
    """

    file: Path

    def __init__(self, file: Path):
        """
        Generates the parser object, sets the file.

        Parameters
        ----------
        file : Path
            File path to the onnx model
        """
        self.file = Path(file)

    def parse_model(self) -> Ensemble:
        """
        Actual model parsing on self.file

        Returns
        -------
        Ensemble
            The committed ensemble

        Raises
        ------
        ParseError
            If the model has no supported tree ensemble op, or the trees are invalid
        """
        try:
            with open(self.file, "rb") as f:
                model = onnx.load(f)
        except OSError as e:
            raise ParseError(f"cannot read {self.file}: {e}") from e
        return self.parse_proto(model)

    def parse_proto(self, model: onnx.ModelProto) -> Ensemble:
        for node in model.graph.node:
            if node.op_type == "TreeEnsembleRegressor":
                logger.info("Found TreeEnsembleRegressor %s", node.name)
                attributes = self._parse_tree_ensemble_regressor(node)
            elif node.op_type == "TreeEnsembleClassifier":
                logger.info("Found TreeEnsembleClassifier %s", node.name)
                attributes = self._parse_tree_ensemble_classifier(node)
            else:
                continue
            n_features = self._infer_n_features(model, attributes)
            return self._build(attributes, n_features)
        raise ParseError("Model does not contain a TreeEnsemble op")

    @staticmethod
    def _get_attributes(node: onnx.NodeProto) -> Dict[str, Any]:
        attributes_dict: Dict[str, Any] = {}
        for attr in node.attribute:
            attributes_dict[attr.name] = onnx.helper.get_attribute_value(attr)
        return attributes_dict

    def _parse_tree_ensemble_regressor(self, node: onnx.NodeProto) -> Mapping:
        """
        Private method to parse the TreeEnsembleRegressor node

        Parameters
        ----------
        node : onnx.NodeProto
            TreeEnsembleRegressor node

        Returns
        -------
        Mapping
            The node fields, with the leaf fields under the "leaf_" prefix
        """
        attributes_dict = self._get_attributes(node)
        for field in ("treeids", "nodeids", "ids", "weights"):
            attributes_dict[f"leaf_{field}"] = attributes_dict.get(f"target_{field}", [])
        return attributes_dict

    def _parse_tree_ensemble_classifier(self, node: onnx.NodeProto) -> Mapping:
        """
        Private method to parse the TreeEnsembleClassifier node.
        Only single-score classifiers (one weight per leaf) are supported.
        """
        attributes_dict = self._get_attributes(node)
        for field in ("treeids", "nodeids", "ids", "weights"):
            attributes_dict[f"leaf_{field}"] = attributes_dict.get(f"class_{field}", [])
        return attributes_dict

    @staticmethod
    def _infer_n_features(model: onnx.ModelProto, attributes: Mapping) -> int:
        # The last dimension of the first graph input, if static
        if model.graph.input:
            dims = model.graph.input[0].type.tensor_type.shape.dim
            if dims and dims[-1].dim_value > 0:
                return dims[-1].dim_value
        featureids = attributes.get("nodes_featureids", [])
        return max(featureids) + 1 if len(featureids) else 1

    def _build(self, attributes: Mapping, n_features: int) -> Ensemble:
        required = (
            "nodes_treeids",
            "nodes_nodeids",
            "nodes_featureids",
            "nodes_values",
            "nodes_modes",
            "nodes_truenodeids",
            "nodes_falsenodeids",
        )
        for field in required:
            if field not in attributes:
                raise ParseError(f"Missing attribute {field}")

        if len(set(attributes["leaf_ids"])) > 1:
            raise ParseError("Only ensembles with a single output are supported")

        # Leaf values, summed per (tree, node)
        leaf_values: Dict[tuple, float] = defaultdict(float)
        for tree_id, node_id, weight in zip(
            attributes["leaf_treeids"],
            attributes["leaf_nodeids"],
            attributes["leaf_weights"],
        ):
            leaf_values[(tree_id, node_id)] += weight

        n_nodes = len(attributes["nodes_nodeids"])
        missing_tracks_true = attributes.get(
            "nodes_missing_value_tracks_true", [0] * n_nodes
        )
        rows_per_tree: Dict[int, List[int]] = defaultdict(list)
        for row, tree_id in enumerate(attributes["nodes_treeids"]):
            rows_per_tree[tree_id].append(row)

        builder = ModelBuilder(n_features)
        try:
            for tree_id in sorted(rows_per_tree):
                tree_index = builder.create_tree()
                rows = rows_per_tree[tree_id]
                children = set()
                for row in rows:
                    builder.create_node(tree_index, attributes["nodes_nodeids"][row])
                for row in rows:
                    node_id = attributes["nodes_nodeids"][row]
                    mode = _as_str(attributes["nodes_modes"][row])
                    if mode == "LEAF":
                        builder.set_leaf_node(
                            tree_index, node_id, leaf_values.get((tree_id, node_id), 0.0)
                        )
                        continue
                    if mode not in ONNX_MODES:
                        raise ParseError(f"Unsupported node mode {mode}")
                    left = attributes["nodes_truenodeids"][row]
                    right = attributes["nodes_falsenodeids"][row]
                    children.update((left, right))
                    builder.set_test_node(
                        tree_index,
                        node_id,
                        attributes["nodes_featureids"][row],
                        ONNX_MODES[mode],
                        attributes["nodes_values"][row],
                        bool(missing_tracks_true[row]),
                        left,
                        right,
                    )
                roots = [
                    attributes["nodes_nodeids"][row]
                    for row in rows
                    if attributes["nodes_nodeids"][row] not in children
                ]
                if len(roots) != 1:
                    raise ParseError(f"Tree {tree_id} has {len(roots)} root candidates")
                builder.set_root_node(tree_index, roots[0])

            base_values = attributes.get("base_values", [0.0])
            return builder.commit(
                post_transform=_as_str(attributes.get("post_transform", "NONE")),
                base_score=float(np.sum(base_values)) if len(base_values) else 0.0,
            )
        except (UsageError, StructuralError) as e:
            raise ParseError(str(e)) from e


def load_onnx_model(path: Union[str, Path]) -> Ensemble:
    return Parser(Path(path)).parse_model()


LOADERS: Mapping[str, Callable[[Union[str, Path]], Ensemble]] = {
    "onnx": load_onnx_model,
}


def load_model(format: str, path: Union[str, Path]) -> Ensemble:
    """
    Load a model file with the loader registered for format.

    Raises
    ------
    ParseError
        If no loader is registered for format
    """
    try:
        loader = LOADERS[format.lower()]
    except KeyError:
        raise ParseError(
            f"Unknown model format {format!r}, expected one of {sorted(LOADERS)}"
        ) from None
    return loader(path)
