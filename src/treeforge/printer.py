"""
Text dump of a committed ensemble, visiting each tree in level order from the root.
Only the read-only Tree/Node interface is used.
"""

from typing import List, Tuple

from treeforge.model import Ensemble, Tree


def format_node(tree: Tree, nid: int) -> str:
    node = tree[nid]
    if node.is_leaf:
        line = f"  {nid}: leaf_value={node.leaf_value:g}"
    else:
        line = (
            f"  {nid}: split_index={node.split_index}, threshold={node.threshold:g}, "
            f"op={node.comparison_op.symbol}, cleft={node.cleft}, cright={node.cright}, "
            f"cdefault={node.cdefault}"
        )
    # The root has no parent
    if not node.is_root:
        line += f", parent={node.parent}"
    return line


def dump_tree(tree: Tree, tree_idx: int = 0) -> Tuple[str, int]:
    """
    Dump a single tree.

    Parameters
    ----------
    tree : Tree
        The committed tree
    tree_idx : int, optional
        Position of the tree in its ensemble, used in the header, by default 0

    Returns
    -------
    Tuple[str, int]
        The text and the number of leaves visited
    """
    lines = [f"Tree #{tree_idx}"]
    n_leaves = 0
    for nid, _ in tree.levelorder():
        lines.append(format_node(tree, nid))
        if tree[nid].is_leaf:
            n_leaves += 1
    lines.append(f"Tree #{tree_idx} has {n_leaves} leaves total")
    return "\n".join(lines) + "\n", n_leaves


def count_leaves(ensemble: Ensemble) -> List[int]:
    return [
        sum(1 for nid, _ in tree.levelorder() if tree[nid].is_leaf)
        for tree in ensemble
    ]


def dump_ensemble(ensemble: Ensemble) -> str:
    chunks = ["\n"]
    for idx, tree in enumerate(ensemble):
        text, _ = dump_tree(tree, idx)
        chunks.append(text + "\n")
    return "".join(chunks)
