"""
Incremental model builder. Trees are assembled node by node, in any order, with
caller-chosen integer keys, then committed into an immutable Ensemble.
"""

import logging
import operator
from collections import deque
from enum import Enum
from typing import Dict, List, Optional, Union

from treeforge.exceptions import (
    StructuralError,
    StructuralErrorKind,
    UsageError,
    UsageErrorKind,
)
from treeforge.model import Ensemble, Node, Operator, Tree

logger = logging.getLogger(__name__)


class NodeState(Enum):
    EMPTY = "empty"
    TEST = "test"
    LEAF = "leaf"


class _DraftNode:
    """
    A node under construction. Test fields are set only in the TEST state, the
    leaf value only in the LEAF state.
    """

    __slots__ = (
        "state",
        "feature_id",
        "op",
        "threshold",
        "default_left",
        "left_key",
        "right_key",
        "leaf_value",
    )

    def __init__(self) -> None:
        self.state = NodeState.EMPTY
        self.feature_id: Optional[int] = None
        self.op: Optional[Operator] = None
        self.threshold: Optional[float] = None
        self.default_left: Optional[bool] = None
        self.left_key: Optional[int] = None
        self.right_key: Optional[int] = None
        self.leaf_value: Optional[float] = None

    def to_test(self, feature_id, op, threshold, default_left, left_key, right_key):
        self.state = NodeState.TEST
        self.feature_id = feature_id
        self.op = op
        self.threshold = threshold
        self.default_left = default_left
        self.left_key = left_key
        self.right_key = right_key

    def to_leaf(self, leaf_value: float) -> None:
        self.state = NodeState.LEAF
        self.leaf_value = leaf_value


def _is_ancestor(candidate: int, idx: int, parents: List[Optional[int]]) -> bool:
    # Walks from idx up to the root, idx included
    current: Optional[int] = idx
    while current is not None:
        if current == candidate:
            return True
        current = parents[current]
    return False


class _TreeDraft:
    """
    A key-addressed tree under construction.
    """

    def __init__(self) -> None:
        self.nodes: Dict[int, _DraftNode] = {}
        self.root_key: Optional[int] = None

    def get(self, key: int) -> _DraftNode:
        try:
            return self.nodes[key]
        except KeyError:
            raise UsageError(
                UsageErrorKind.MISSING_KEY, f"no node with key {key}"
            ) from None

    def get_empty(self, key: int) -> _DraftNode:
        node = self.get(key)
        if node.state is not NodeState.EMPTY:
            raise UsageError(
                UsageErrorKind.NODE_NOT_EMPTY,
                f"node {key} is already a {node.state.value} node",
            )
        return node

    def compact(self, tree_index: int) -> Tree:
        """
        Validate the draft and lay its nodes out in breadth-first order from the
        root, left child first. Leaves the draft untouched.

        Parameters
        ----------
        tree_index : int
            Position of the draft, used to report errors

        Returns
        -------
        Tree
            The committed tree, root at index 0

        Raises
        ------
        StructuralError
            If the draft does not describe a single, complete tree
        """
        if self.root_key is None:
            raise StructuralError(StructuralErrorKind.MISSING_ROOT, tree_index)

        index: Dict[int, int] = {self.root_key: 0}
        order: List[int] = [self.root_key]
        parents: List[Optional[int]] = [None]
        queue = deque([self.root_key])
        while queue:
            key = queue.popleft()
            node = self.nodes[key]
            if node.state is not NodeState.TEST:
                continue
            for child in (node.left_key, node.right_key):
                if child not in self.nodes:
                    raise StructuralError(
                        StructuralErrorKind.DANGLING_CHILD,
                        tree_index,
                        key=child,
                        message=f"node {key} references missing child {child}",
                    )
                if child in index:
                    kind = (
                        StructuralErrorKind.CYCLE
                        if _is_ancestor(index[child], index[key], parents)
                        else StructuralErrorKind.SHARED_CHILD
                    )
                    raise StructuralError(kind, tree_index, key=child)
                index[child] = len(order)
                order.append(child)
                parents.append(index[key])
                queue.append(child)

        if len(order) != len(self.nodes):
            orphan = next(key for key in self.nodes if key not in index)
            raise StructuralError(
                StructuralErrorKind.ORPHANED_NODE, tree_index, key=orphan
            )
        for key in order:
            if self.nodes[key].state is NodeState.EMPTY:
                raise StructuralError(StructuralErrorKind.EMPTY_NODE, tree_index, key=key)

        nodes = []
        for pos, key in enumerate(order):
            node = self.nodes[key]
            if node.state is NodeState.LEAF:
                nodes.append(Node.leaf(node.leaf_value, parent=parents[pos]))
            else:
                nodes.append(
                    Node.test(
                        split_index=node.feature_id,
                        comparison_op=node.op,
                        threshold=node.threshold,
                        default_left=node.default_left,
                        cleft=index[node.left_key],
                        cright=index[node.right_key],
                        parent=parents[pos],
                    )
                )
        return Tree(nodes)


class ModelBuilder:
    """
    Builds an ensemble incrementally.

    Every failed call raises UsageError and leaves the builder unchanged.
    The builder is not thread-safe; concurrent callers must serialise access.
    """

    def __init__(self, num_features: int) -> None:
        num_features = operator.index(num_features)
        if num_features <= 0:
            raise ValueError("num_features must be positive")
        self._num_features: int = num_features
        self._trees: List[_TreeDraft] = []

    def __len__(self) -> int:
        return len(self._trees)

    @property
    def num_features(self) -> int:
        return self._num_features

    def _get_tree(self, tree_index: int) -> _TreeDraft:
        tree_index = operator.index(tree_index)
        if not 0 <= tree_index < len(self._trees):
            raise UsageError(
                UsageErrorKind.TREE_INDEX_OUT_OF_RANGE,
                f"tree {tree_index} does not exist, the builder has "
                f"{len(self._trees)} trees",
            )
        return self._trees[tree_index]

    # Tree methods
    def create_tree(self, index: int = -1) -> int:
        """
        Create a new, empty tree.

        Parameters
        ----------
        index : int, optional
            Position at which the new tree is placed, -1 to append, by default -1

        Returns
        -------
        int
            Position of the new tree within the ensemble
        """
        index = operator.index(index)
        if index == -1:
            index = len(self._trees)
        if not 0 <= index <= len(self._trees):
            raise UsageError(
                UsageErrorKind.TREE_INDEX_OUT_OF_RANGE,
                f"cannot insert a tree at {index}, valid range is "
                f"0..{len(self._trees)}",
            )
        self._trees.insert(index, _TreeDraft())
        logger.debug("Created tree #%d", index)
        return index

    def delete_tree(self, index: int) -> None:
        """
        Remove a tree; the following trees shift down by one.
        """
        self._get_tree(index)
        del self._trees[index]
        logger.debug("Deleted tree #%d", index)

    # Node methods
    def create_node(self, tree_index: int, key: int) -> None:
        """
        Create an empty node within a tree.

        Parameters
        ----------
        tree_index : int
            Index of the tree into which the new node will be placed
        key : int
            Unique integer key identifying the new node within the tree
        """
        tree = self._get_tree(tree_index)
        key = operator.index(key)
        if key in tree.nodes:
            raise UsageError(
                UsageErrorKind.DUPLICATE_KEY,
                f"tree {tree_index} already has a node with key {key}",
            )
        tree.nodes[key] = _DraftNode()
        logger.debug("Created node %d in tree #%d", key, tree_index)

    def delete_node(self, tree_index: int, key: int) -> None:
        """
        Remove a node from a tree. References to it from other nodes are kept and
        make the commit fail until they are fixed.
        """
        tree = self._get_tree(tree_index)
        key = operator.index(key)
        tree.get(key)
        del tree.nodes[key]
        if tree.root_key == key:
            tree.root_key = None
        logger.debug("Deleted node %d from tree #%d", key, tree_index)

    def set_root_node(self, tree_index: int, key: int) -> None:
        """
        Set a node as the root of a tree, replacing the previous root if any.
        """
        tree = self._get_tree(tree_index)
        key = operator.index(key)
        tree.get(key)
        tree.root_key = key

    def set_test_node(
        self,
        tree_index: int,
        key: int,
        feature_id: int,
        op: Union[Operator, str],
        threshold: float,
        default_left: bool,
        left_child_key: int,
        right_child_key: int,
    ) -> None:
        """
        Turn an empty node into a test node; the test is in the form
        [feature value] OP [threshold]. The left child is taken when the test holds.

        Parameters
        ----------
        tree_index : int
            Index of the tree containing the node
        key : int
            Key of the node, which must be empty
        feature_id : int
            Id of the feature, lower than the number of features of the builder
        op : Union[Operator, str]
            Comparison operator, as an Operator, its name or its symbol
        threshold : float
            Threshold value
        default_left : bool
            Default direction for missing values
        left_child_key , right_child_key : int
            Keys of the children. They do not need to exist yet, but must differ.

        Raises
        ------
        UsageError
            If any of the preconditions above does not hold
        """
        tree = self._get_tree(tree_index)
        key = operator.index(key)
        node = tree.get_empty(key)
        feature_id = operator.index(feature_id)
        if not 0 <= feature_id < self._num_features:
            raise UsageError(
                UsageErrorKind.FEATURE_OUT_OF_RANGE,
                f"feature {feature_id} is outside 0..{self._num_features - 1}",
            )
        try:
            op = Operator.parse(op)
        except ValueError as e:
            raise UsageError(UsageErrorKind.INVALID_OPERATOR, str(e)) from e
        left_child_key = operator.index(left_child_key)
        right_child_key = operator.index(right_child_key)
        if left_child_key == right_child_key:
            raise UsageError(
                UsageErrorKind.SAME_CHILD_KEYS,
                f"node {key} uses {left_child_key} as both children",
            )
        node.to_test(
            feature_id,
            op,
            float(threshold),
            bool(default_left),
            left_child_key,
            right_child_key,
        )
        logger.debug(
            "Node %d of tree #%d: feature %d %s %s",
            key,
            tree_index,
            feature_id,
            op.symbol,
            threshold,
        )

    def set_leaf_node(self, tree_index: int, key: int, leaf_value: float) -> None:
        """
        Turn an empty node into a leaf carrying leaf_value.
        """
        tree = self._get_tree(tree_index)
        key = operator.index(key)
        node = tree.get_empty(key)
        node.to_leaf(float(leaf_value))
        logger.debug("Node %d of tree #%d: leaf %s", key, tree_index, leaf_value)

    # Introspection
    def num_nodes(self, tree_index: int) -> int:
        return len(self._get_tree(tree_index).nodes)

    def has_node(self, tree_index: int, key: int) -> bool:
        return operator.index(key) in self._get_tree(tree_index).nodes

    def root_key(self, tree_index: int) -> Optional[int]:
        return self._get_tree(tree_index).root_key

    def node_state(self, tree_index: int, key: int) -> NodeState:
        return self._get_tree(tree_index).get(operator.index(key)).state

    def commit(self, **kwargs) -> Ensemble:
        """
        Finalize the model and produce the in-memory representation.
        Either every tree is valid and an Ensemble is returned, or nothing is
        produced. The drafts are left untouched and stay editable.

        Parameters
        ----------
        **kwargs
            Forwarded to Ensemble (post_transform, base_score)

        Returns
        -------
        Ensemble
            The committed ensemble

        Raises
        ------
        StructuralError
            On the first tree that fails validation
        """
        trees = [draft.compact(idx) for idx, draft in enumerate(self._trees)]
        ensemble = Ensemble(trees=trees, n_features=self._num_features, **kwargs)
        logger.info(
            "Committed %d trees, %d nodes in total", ensemble.n_trees, ensemble.n_nodes
        )
        return ensemble
