import pytest

from treeforge import ModelBuilder, Operator


def build_stump(builder, tree_index=0, keys=(0, 1, 2), values=(-0.2, 0.7)):
    """
    Root test node (feature 3 <= 0.5, missing goes left) with two leaves.
    """
    root, left, right = keys
    for key in keys:
        builder.create_node(tree_index, key)
    builder.set_root_node(tree_index, root)
    builder.set_test_node(tree_index, root, 3, Operator.LE, 0.5, True, left, right)
    builder.set_leaf_node(tree_index, left, values[0])
    builder.set_leaf_node(tree_index, right, values[1])


def build_depth_two(builder, tree_index=0):
    """
    Two levels of tests, nodes created in shuffled order with sparse keys.

          10
        /    \\
       40     20
      /  \\   /  \\
     7   99  5   31
    """
    for key in (99, 5, 20, 7, 31, 10, 40):
        builder.create_node(tree_index, key)
    builder.set_leaf_node(tree_index, 31, 4.0)
    builder.set_test_node(tree_index, 20, 1, "GT", 2.5, False, 5, 31)
    builder.set_leaf_node(tree_index, 7, 1.0)
    builder.set_test_node(tree_index, 10, 0, Operator.LT, 0.0, True, 40, 20)
    builder.set_leaf_node(tree_index, 99, 2.0)
    builder.set_test_node(tree_index, 40, 2, "==", 1.0, False, 7, 99)
    builder.set_leaf_node(tree_index, 5, 3.0)
    builder.set_root_node(tree_index, 10)


@pytest.fixture
def builder():
    return ModelBuilder(num_features=4)


@pytest.fixture
def stump_builder(builder):
    builder.create_tree()
    build_stump(builder)
    return builder


@pytest.fixture
def stump(stump_builder):
    return stump_builder.commit()[0]


def build_chain(builder, depth, tree_index=0):
    """
    Left-leaning chain of `depth` test nodes: test 2*i sends its left child to
    the next test and its right child to leaf 2*i + 1; key 2*depth is the last leaf.
    """
    for i in range(depth):
        builder.create_node(tree_index, 2 * i)
        builder.create_node(tree_index, 2 * i + 1)
        builder.set_test_node(
            tree_index, 2 * i, i % builder.num_features, Operator.LE, float(i), True,
            2 * i + 2, 2 * i + 1,
        )
        builder.set_leaf_node(tree_index, 2 * i + 1, float(i))
    builder.create_node(tree_index, 2 * depth)
    builder.set_leaf_node(tree_index, 2 * depth, float(depth))
    builder.set_root_node(tree_index, 0)
