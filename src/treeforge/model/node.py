from enum import Enum
from typing import Any, Optional, Union

from treeforge.exceptions import NodeKindError


class Operator(Enum):
    """
    Comparison used by a test node, in the form [feature value] OP [threshold].
    The left child is taken when the comparison holds.
    """

    EQ = "=="
    LT = "<"
    LE = "<="
    GT = ">"
    GE = ">="

    @property
    def symbol(self) -> str:
        return self.value

    @classmethod
    def parse(cls, op: Union["Operator", str]) -> "Operator":
        """
        Accepts an Operator, its name ("LE") or its symbol ("<=").

        Raises
        ------
        ValueError
            If op does not name a supported operator
        """
        if isinstance(op, cls):
            return op
        if isinstance(op, str):
            if op.upper() in cls.__members__:
                return cls[op.upper()]
            for member in cls:
                if member.value == op:
                    return member
        raise ValueError(f"Unknown comparison operator {op!r}")


class Node:
    """
    Immutable vertex of a committed tree. Children and parent are indices in the
    node array of the owning tree; index 0 is always the root.

    Test-only fields raise NodeKindError on leaves and vice versa.
    """

    __slots__ = (
        "_parent",
        "_leaf_value",
        "_split_index",
        "_threshold",
        "_comparison_op",
        "_default_left",
        "_cleft",
        "_cright",
    )

    def __init__(
        self,
        *,
        parent: Optional[int],
        leaf_value: Optional[float] = None,
        split_index: Optional[int] = None,
        threshold: Optional[float] = None,
        comparison_op: Optional[Operator] = None,
        default_left: Optional[bool] = None,
        cleft: Optional[int] = None,
        cright: Optional[int] = None,
    ) -> None:
        is_leaf = leaf_value is not None
        test_fields = (split_index, threshold, comparison_op, default_left, cleft, cright)
        if is_leaf and any(f is not None for f in test_fields):
            raise ValueError("A leaf node cannot carry test fields")
        if not is_leaf and any(f is None for f in test_fields):
            raise ValueError("A test node needs all of its test fields")
        if not is_leaf and cleft == cright:
            raise ValueError("Left and right children must differ")

        set_ = object.__setattr__
        set_(self, "_parent", None if parent is None else int(parent))
        set_(self, "_leaf_value", None if leaf_value is None else float(leaf_value))
        set_(self, "_split_index", None if is_leaf else int(split_index))
        set_(self, "_threshold", None if is_leaf else float(threshold))
        set_(
            self, "_comparison_op", None if is_leaf else Operator.parse(comparison_op)
        )
        set_(self, "_default_left", None if is_leaf else bool(default_left))
        set_(self, "_cleft", None if is_leaf else int(cleft))
        set_(self, "_cright", None if is_leaf else int(cright))

    @classmethod
    def leaf(cls, leaf_value: float, parent: Optional[int]) -> "Node":
        return cls(parent=parent, leaf_value=leaf_value)

    @classmethod
    def test(
        cls,
        split_index: int,
        comparison_op: Operator,
        threshold: float,
        default_left: bool,
        cleft: int,
        cright: int,
        parent: Optional[int],
    ) -> "Node":
        return cls(
            parent=parent,
            split_index=split_index,
            threshold=threshold,
            comparison_op=comparison_op,
            default_left=default_left,
            cleft=cleft,
            cright=cright,
        )

    def __setattr__(self, name: str, value: Any) -> None:
        raise AttributeError(f"{type(self).__name__} is immutable")

    def __delattr__(self, name: str) -> None:
        raise AttributeError(f"{type(self).__name__} is immutable")

    # PROPERTIES
    @property
    def is_leaf(self) -> bool:
        return self._leaf_value is not None

    @property
    def is_root(self) -> bool:
        return self._parent is None

    @property
    def parent(self) -> Optional[int]:
        """
        Index of the parent node, None for the root.
        """
        return self._parent

    @property
    def leaf_value(self) -> float:
        if not self.is_leaf:
            raise NodeKindError("Test nodes have no leaf value")
        return self._leaf_value

    def _test_field(self, value, name):
        if self.is_leaf:
            raise NodeKindError(f"Leaf nodes have no {name}")
        return value

    @property
    def split_index(self) -> int:
        """
        Id of the feature evaluated by the test.
        """
        return self._test_field(self._split_index, "split index")

    @property
    def threshold(self) -> float:
        return self._test_field(self._threshold, "threshold")

    @property
    def comparison_op(self) -> Operator:
        return self._test_field(self._comparison_op, "comparison operator")

    @property
    def default_left(self) -> bool:
        """
        True if a missing feature value takes the left child.
        """
        return self._test_field(self._default_left, "default direction")

    @property
    def cleft(self) -> int:
        return self._test_field(self._cleft, "left child")

    @property
    def cright(self) -> int:
        return self._test_field(self._cright, "right child")

    @property
    def cdefault(self) -> int:
        """
        Index of the child taken when the feature value is missing.
        """
        return self.cleft if self.default_left else self.cright

    # Methods
    def _fields(self):
        return tuple(getattr(self, slot) for slot in self.__slots__)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Node):
            return NotImplemented
        return self._fields() == other._fields()

    def __hash__(self) -> int:
        return hash(self._fields())

    def __repr__(self) -> str:
        if self.is_leaf:
            return f"Node(leaf_value={self._leaf_value}, parent={self._parent})"
        return (
            f"Node(split_index={self._split_index}, op={self._comparison_op.name}, "
            f"threshold={self._threshold}, default_left={self._default_left}, "
            f"cleft={self._cleft}, cright={self._cright}, parent={self._parent})"
        )
