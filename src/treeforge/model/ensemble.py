from collections import deque
from typing import Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np
from bigtree import BinaryNode

from treeforge.model.node import Node, Operator

# Integer codes of the comparison operators in the exported arrays; leaves use -1
OPERATOR_CODES = {op: code for code, op in enumerate(Operator)}


def _readonly(array: np.ndarray) -> np.ndarray:
    array.setflags(write=False)
    return array


class Tree:
    """
    Committed decision tree: a dense, immutable array of nodes with the root at
    index 0. Consumers traverse it starting from index 0.
    """

    __slots__ = ("_nodes",)

    def __init__(self, nodes: Iterable[Node]) -> None:
        nodes = tuple(nodes)
        self._check_links(nodes)
        object.__setattr__(self, "_nodes", nodes)

    @staticmethod
    def _check_links(nodes: Sequence[Node]) -> None:
        """
        Validates the index links of a node array.

        Raises
        ------
        ValueError
            If the array is empty, node 0 is not the root, or the parent/child
            links do not describe a single tree
        """
        if not nodes:
            raise ValueError("A tree needs at least one node")
        if not all(isinstance(node, Node) for node in nodes):
            raise TypeError("Tree nodes must be treeforge Node objects")
        if not nodes[0].is_root:
            raise ValueError("Node 0 must be the root")

        n_nodes = len(nodes)
        referenced = [0] * n_nodes
        for nid, node in enumerate(nodes):
            if nid > 0 and node.is_root:
                raise ValueError(f"Node {nid} has no parent but is not at index 0")
            if node.is_leaf:
                continue
            for child in (node.cleft, node.cright):
                if not 0 < child < n_nodes:
                    raise ValueError(f"Node {nid} has an invalid child index {child}")
                if nodes[child].parent != nid:
                    raise ValueError(
                        f"Node {child} is a child of {nid} but its parent is "
                        f"{nodes[child].parent}"
                    )
                referenced[child] += 1
        for nid in range(1, n_nodes):
            if referenced[nid] != 1:
                raise ValueError(f"Node {nid} is referenced {referenced[nid]} times")

        # Parent links are consistent, so a walk from the root must reach everything
        seen = 1
        stack = [0]
        while stack:
            node = nodes[stack.pop()]
            if not node.is_leaf:
                stack.extend((node.cleft, node.cright))
                seen += 2
        if seen != n_nodes:
            raise ValueError("Some nodes are not reachable from the root")

    def __setattr__(self, name, value) -> None:
        raise AttributeError("Tree is immutable")

    def __len__(self) -> int:
        return len(self._nodes)

    def __getitem__(self, nid: int) -> Node:
        return self._nodes[nid]

    def __iter__(self) -> Iterator[Node]:
        return iter(self._nodes)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Tree):
            return NotImplemented
        return self._nodes == other._nodes

    def __hash__(self) -> int:
        return hash(self._nodes)

    def __repr__(self) -> str:
        return f"Tree(n_nodes={self.n_nodes}, n_leaves={self.n_leaves})"

    # PROPERTIES AND CONTROL VARIABLES
    @property
    def nodes(self) -> Sequence[Node]:
        return self._nodes

    @property
    def root(self) -> Node:
        return self._nodes[0]

    @property
    def n_nodes(self) -> int:
        return len(self._nodes)

    @property
    def n_leaves(self) -> int:
        return sum(1 for node in self._nodes if node.is_leaf)

    @property
    def max_depth(self) -> int:
        """
        Depth of the deepest leaf, the root has depth 1.
        """
        return max(depth for _, depth in self.levelorder())

    def levelorder(self) -> Iterator[Tuple[int, int]]:
        """
        Breadth-first visit from the root, left child before right.

        Yields
        ------
        Tuple[int, int]
            Node index and its depth (the root has depth 1)
        """
        queue = deque([(0, 1)])
        while queue:
            nid, depth = queue.popleft()
            yield nid, depth
            node = self._nodes[nid]
            if not node.is_leaf:
                queue.append((node.cleft, depth + 1))
                queue.append((node.cright, depth + 1))

    # Export functions
    def to_binary_tree(self) -> BinaryNode:
        """
        Mirror the tree as a bigtree BinaryNode structure.
        Each bigtree node is named after its index and carries it as `nid`.

        Returns
        -------
        BinaryNode
            The root of the mirrored tree
        """
        mirror = [BinaryNode(name=str(nid), nid=nid) for nid in range(len(self._nodes))]
        for nid, node in enumerate(self._nodes):
            if not node.is_leaf:
                mirror[nid].left = mirror[node.cleft]
                mirror[nid].right = mirror[node.cright]
        return mirror[0]

    def to_numpy_arrays(self) -> Mapping[str, np.ndarray]:
        """
        Export the tree as flat arrays, one entry per node, in index order.
        Leaves have -1 as children, feature and operator code.

        Returns
        -------
        Mapping[str, np.ndarray]
            Field name : read-only numpy array
        """
        n_nodes = len(self._nodes)
        featureids = np.full(n_nodes, -1, dtype=np.int64)
        values = np.zeros(n_nodes, dtype=np.float64)
        modes = np.full(n_nodes, -1, dtype=np.int64)
        truenodeids = np.full(n_nodes, -1, dtype=np.int64)
        falsenodeids = np.full(n_nodes, -1, dtype=np.int64)
        parentids = np.full(n_nodes, -1, dtype=np.int64)
        defaultleft = np.zeros(n_nodes, dtype=bool)
        is_leaf = np.zeros(n_nodes, dtype=bool)

        for nid, node in enumerate(self._nodes):
            if not node.is_root:
                parentids[nid] = node.parent
            if node.is_leaf:
                values[nid] = node.leaf_value
                is_leaf[nid] = True
            else:
                featureids[nid] = node.split_index
                values[nid] = node.threshold
                modes[nid] = OPERATOR_CODES[node.comparison_op]
                truenodeids[nid] = node.cleft
                falsenodeids[nid] = node.cright
                defaultleft[nid] = node.default_left

        arrays = {
            "nodes_featureids": featureids,
            "nodes_values": values,
            "nodes_modes": modes,
            "nodes_truenodeids": truenodeids,
            "nodes_falsenodeids": falsenodeids,
            "nodes_parentids": parentids,
            "nodes_defaultleft": defaultleft,
            "nodes_isleaf": is_leaf,
        }
        return {k: _readonly(v) for k, v in arrays.items()}


class Ensemble:
    """
    Core class for a committed ensemble of trees.
    Trees are kept in order, their outputs are meant to be summed.

    """

    __slots__ = ("_trees", "_n_features", "_post_transform", "_base_score")

    # Class Builders
    def __init__(
        self,
        *,
        trees: Iterable[Union[Tree, Sequence[Node]]],
        n_features: int,
        post_transform: Optional[str] = None,
        base_score: float = 0.0,
    ) -> None:
        trees = tuple(t if isinstance(t, Tree) else Tree(t) for t in trees)
        if int(n_features) <= 0:
            raise ValueError("n_features must be positive")
        for idx, tree in enumerate(trees):
            for node in tree:
                if not node.is_leaf and node.split_index >= n_features:
                    raise ValueError(
                        f"Tree #{idx} tests feature {node.split_index}, "
                        f"but the ensemble has {n_features} features"
                    )
        set_ = object.__setattr__
        set_(self, "_trees", trees)
        set_(self, "_n_features", int(n_features))
        set_(self, "_post_transform", post_transform)
        set_(self, "_base_score", float(base_score))

    def __setattr__(self, name, value) -> None:
        raise AttributeError("Ensemble is immutable")

    def __getitem__(self, idx: int) -> Tree:
        return self._trees[idx]

    def __len__(self) -> int:
        return len(self._trees)

    def __iter__(self) -> Iterator[Tree]:
        return iter(self._trees)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Ensemble):
            return NotImplemented
        return (
            self._trees == other._trees
            and self._n_features == other._n_features
            and self._post_transform == other._post_transform
            and self._base_score == other._base_score
        )

    def __hash__(self) -> int:
        return hash((self._trees, self._n_features))

    def __repr__(self) -> str:
        return f"Ensemble(n_trees={self.n_trees}, n_features={self.n_features})"

    # PROPERTIES AND CONTROL VARIABLES
    @property
    def trees(self) -> Sequence[Tree]:
        return self._trees

    @property
    def n_features(self) -> int:
        return self._n_features

    @property
    def post_transform(self) -> Optional[str]:
        return self._post_transform

    @property
    def base_score(self) -> float:
        return self._base_score

    @property
    def n_trees(self) -> int:
        return len(self._trees)

    @property
    def n_nodes(self) -> int:
        return sum(tree.n_nodes for tree in self._trees)

    @property
    def n_leaves(self) -> int:
        return sum(tree.n_leaves for tree in self._trees)

    @property
    def max_depth(self) -> int:
        if not self._trees:
            return 0
        return max([tree.max_depth for tree in self._trees])

    # Export functions
    def to_numpy_arrays(self) -> Mapping[str, np.ndarray]:
        """
        Export the ensemble to flat arrays, for code generators.
        Trees are concatenated; child and parent ids are global positions in the
        concatenated arrays, roots_ids holds the position of each tree root.

        Returns
        -------
        Mapping[str, np.ndarray]
            A dictionary containing the arrays. The key is the name of the field.
            All arrays are read-only.
        """
        roots_ids: List[int] = []
        per_tree: List[Mapping[str, np.ndarray]] = []
        n_nodes = 0
        for tree in self._trees:
            arrays = dict(tree.to_numpy_arrays())
            for k in ("nodes_truenodeids", "nodes_falsenodeids", "nodes_parentids"):
                shifted = arrays[k].copy()
                shifted[shifted >= 0] += n_nodes
                arrays[k] = shifted
            roots_ids.append(n_nodes)
            per_tree.append(arrays)
            n_nodes += tree.n_nodes

        fields = [
            "nodes_featureids",
            "nodes_values",
            "nodes_modes",
            "nodes_truenodeids",
            "nodes_falsenodeids",
            "nodes_parentids",
            "nodes_defaultleft",
            "nodes_isleaf",
        ]
        dtypes = {"nodes_values": np.float64, "nodes_defaultleft": bool, "nodes_isleaf": bool}
        result = {"roots_ids": np.asarray(roots_ids, dtype=np.int64)}
        for k in fields:
            if per_tree:
                result[k] = np.concatenate([arrays[k] for arrays in per_tree])
            else:
                result[k] = np.zeros(0, dtype=dtypes.get(k, np.int64))
        return {k: _readonly(v) for k, v in result.items()}
