import numpy as np
import pytest

from treeforge import Ensemble, ModelBuilder, Node, NodeKindError, Operator, Tree

from .conftest import build_depth_two, build_stump


def stump_nodes():
    return [
        Node.test(1, Operator.LT, 0.25, False, 1, 2, parent=None),
        Node.leaf(-1.0, parent=0),
        Node.leaf(1.0, parent=0),
    ]


def test_leaf_has_no_test_fields(stump):
    leaf = stump[1]
    for field in ("split_index", "threshold", "comparison_op", "cleft", "cright"):
        with pytest.raises(NodeKindError):
            getattr(leaf, field)
    # NodeKindError is an AttributeError, so hasattr works as expected
    assert not hasattr(leaf, "default_left")


def test_test_node_has_no_leaf_value(stump):
    with pytest.raises(NodeKindError):
        stump[0].leaf_value


def test_cdefault_follows_default_direction():
    tree = Tree(stump_nodes())
    assert tree[0].default_left is False
    assert tree[0].cdefault == tree[0].cright == 2


def test_nodes_are_immutable(stump):
    with pytest.raises(AttributeError):
        stump[0].threshold = 3.0
    with pytest.raises(AttributeError):
        stump[0]._threshold = 3.0
    with pytest.raises(AttributeError):
        stump._nodes = ()
    with pytest.raises(TypeError):
        stump.nodes[0] = stump[1]


def test_node_rejects_mixed_fields():
    with pytest.raises(ValueError):
        Node(parent=None, leaf_value=1.0, split_index=0)
    with pytest.raises(ValueError):
        Node(parent=None, split_index=0, threshold=1.0)
    with pytest.raises(ValueError):
        Node.test(0, Operator.LE, 0.0, True, 1, 1, parent=None)


def test_operator_parse():
    assert Operator.parse(">=") is Operator.GE
    assert Operator.parse("eq") is Operator.EQ
    assert Operator.GT.symbol == ">"
    with pytest.raises(ValueError):
        Operator.parse("<>")
    with pytest.raises(ValueError):
        Operator.parse(3)


def test_tree_from_nodes():
    tree = Tree(stump_nodes())
    assert tree.n_nodes == 3
    assert tree.n_leaves == 2
    assert tree.max_depth == 2
    assert tree.root is tree[0]


@pytest.mark.parametrize(
    "nodes",
    [
        [],
        [Node.leaf(1.0, parent=0)],
        [
            Node.test(0, Operator.LE, 0.0, True, 1, 3, parent=None),
            Node.leaf(1.0, parent=0),
            Node.leaf(2.0, parent=0),
        ],
        [
            Node.test(0, Operator.LE, 0.0, True, 1, 2, parent=None),
            Node.leaf(1.0, parent=0),
            Node.leaf(2.0, parent=1),
        ],
        [
            Node.test(0, Operator.LE, 0.0, True, 1, 2, parent=None),
            Node.leaf(1.0, parent=0),
            Node.leaf(2.0, parent=0),
            Node.leaf(3.0, parent=None),
        ],
    ],
    ids=["empty", "root-with-parent", "bad-child", "bad-parent", "two-roots"],
)
def test_tree_rejects_broken_links(nodes):
    with pytest.raises(ValueError):
        Tree(nodes)


def test_tree_rejects_unreachable_cycle():
    nodes = [
        Node.leaf(0.0, parent=None),
        Node.test(0, Operator.LE, 0.0, True, 2, 3, parent=2),
        Node.test(0, Operator.LE, 0.0, True, 1, 3, parent=1),
        Node.leaf(0.0, parent=1),
    ]
    with pytest.raises(ValueError):
        Tree(nodes)


def test_ensemble_statistics():
    builder = ModelBuilder(num_features=4)
    builder.create_tree()
    build_stump(builder, 0)
    builder.create_tree()
    build_depth_two(builder, 1)
    ensemble = builder.commit(post_transform="NONE", base_score=0.5)

    assert len(ensemble) == ensemble.n_trees == 2
    assert ensemble.n_nodes == 10
    assert ensemble.n_leaves == 6
    assert ensemble.max_depth == 3
    assert ensemble.post_transform == "NONE"
    assert ensemble.base_score == 0.5
    assert [tree.n_nodes for tree in ensemble] == [3, 7]


def test_ensemble_checks_feature_bound():
    with pytest.raises(ValueError):
        Ensemble(trees=[stump_nodes()], n_features=1)
    ensemble = Ensemble(trees=[stump_nodes()], n_features=2)
    assert isinstance(ensemble[0], Tree)


def test_tree_numpy_arrays(stump):
    arrays = stump.to_numpy_arrays()
    np.testing.assert_array_equal(arrays["nodes_featureids"], [3, -1, -1])
    np.testing.assert_array_equal(arrays["nodes_truenodeids"], [1, -1, -1])
    np.testing.assert_array_equal(arrays["nodes_falsenodeids"], [2, -1, -1])
    np.testing.assert_array_equal(arrays["nodes_parentids"], [-1, 0, 0])
    np.testing.assert_array_equal(arrays["nodes_isleaf"], [False, True, True])
    np.testing.assert_allclose(arrays["nodes_values"], [0.5, -0.2, 0.7])
    for array in arrays.values():
        assert not array.flags.writeable


def test_ensemble_numpy_arrays_use_global_ids():
    builder = ModelBuilder(num_features=4)
    builder.create_tree()
    build_stump(builder, 0)
    builder.create_tree()
    build_stump(builder, 1, values=(1.0, 2.0))
    arrays = builder.commit().to_numpy_arrays()

    np.testing.assert_array_equal(arrays["roots_ids"], [0, 3])
    np.testing.assert_array_equal(arrays["nodes_truenodeids"], [1, -1, -1, 4, -1, -1])
    np.testing.assert_array_equal(arrays["nodes_falsenodeids"], [2, -1, -1, 5, -1, -1])
    np.testing.assert_array_equal(arrays["nodes_parentids"], [-1, 0, 0, -1, 3, 3])
    assert not arrays["nodes_values"].flags.writeable


def test_binary_tree_mirror(stump):
    root = stump.to_binary_tree()
    assert root.nid == 0
    assert root.left.nid == stump[0].cleft
    assert root.right.nid == stump[0].cright
    assert root.left.is_leaf
