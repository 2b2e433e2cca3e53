"""
Compiled Expressions

Immutable boolean trees produced by the compiler. Every node knows its
estimated cost; AND/OR children are kept sorted by `(cost, order)` so that
evaluation short-circuits on the cheapest checks first.

Nodes evaluate against an entry and a viewer context. The context only needs
a `follows(author_id) -> bool` method; the evaluation engine supplies one that
memoises social facts for the duration of a single evaluation.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Tuple

from feedengine.filters.base import Filter
from feedengine.models import ContentEntry


COMPILER_VERSION = "1"

FOLLOWING_SCOPE_COST = 1.5


class ExpressionNode(ABC):
    """A node of a compiled boolean tree."""

    order: int = 0

    @property
    @abstractmethod
    def cost(self) -> float:
        """Estimated cost of evaluating this subtree once."""

    @abstractmethod
    def evaluate(self, entry: ContentEntry, context: Any) -> bool:
        """Whether the entry satisfies this subtree."""

    @abstractmethod
    def author_scope(self) -> Optional[FrozenSet[str]]:
        """Finite set of authors this subtree can match, or None for any."""

    @abstractmethod
    def describe(self, depth: int = 0) -> List[str]:
        """Indented, human-readable rendering of the subtree."""

    @abstractmethod
    def to_dict(self) -> Dict[str, Any]:
        pass


def _sort_key(node: ExpressionNode) -> Tuple[float, int]:
    return (node.cost, node.order)


class LeafNode(ExpressionNode):
    """A single filter block."""

    def __init__(self, filter_instance: Filter, order: int = 0):
        self.filter = filter_instance
        self.order = order
        self._cost = filter_instance.estimated_cost

    @property
    def cost(self) -> float:
        return self._cost

    def evaluate(self, entry: ContentEntry, context: Any) -> bool:
        return self.filter.apply(entry)

    def author_scope(self) -> Optional[FrozenSet[str]]:
        return self.filter.author_scope()

    def describe(self, depth: int = 0) -> List[str]:
        return [f"{'  ' * depth}{self.filter.description}  [cost {self._cost:g}]"]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": "leaf",
            "kind": self.filter.kind.value,
            "operator": self.filter.operator.value,
            "cost": self._cost,
            "order": self.order,
        }


class NotNode(ExpressionNode):
    """Negation of a subtree; costs what its child costs."""

    def __init__(self, child: ExpressionNode):
        self.child = child
        self.order = child.order

    @property
    def cost(self) -> float:
        return self.child.cost

    def evaluate(self, entry: ContentEntry, context: Any) -> bool:
        return not self.child.evaluate(entry, context)

    def author_scope(self) -> Optional[FrozenSet[str]]:
        return None

    def describe(self, depth: int = 0) -> List[str]:
        return [f"{'  ' * depth}NOT"] + self.child.describe(depth + 1)

    def to_dict(self) -> Dict[str, Any]:
        return {"type": "not", "cost": self.cost, "child": self.child.to_dict()}


class _CompoundNode(ExpressionNode):
    label = ""

    def __init__(self, children: Iterable[ExpressionNode]):
        self.children: Tuple[ExpressionNode, ...] = tuple(sorted(children, key=_sort_key))
        if not self.children:
            raise ValueError(f"{self.label} node needs at least one child")
        self.order = min(child.order for child in self.children)
        self._cost = sum(child.cost for child in self.children)

    @property
    def cost(self) -> float:
        return self._cost

    def describe(self, depth: int = 0) -> List[str]:
        lines = [f"{'  ' * depth}{self.label}  [cost {self._cost:g}]"]
        for child in self.children:
            lines.extend(child.describe(depth + 1))
        return lines

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.label.lower(),
            "cost": self._cost,
            "children": [child.to_dict() for child in self.children],
        }


class AndNode(_CompoundNode):
    label = "AND"

    def evaluate(self, entry: ContentEntry, context: Any) -> bool:
        for child in self.children:
            if not child.evaluate(entry, context):
                return False
        return True

    def author_scope(self) -> Optional[FrozenSet[str]]:
        scopes = [s for s in (child.author_scope() for child in self.children) if s is not None]
        if not scopes:
            return None
        return frozenset.intersection(*scopes)


class OrNode(_CompoundNode):
    label = "OR"

    def evaluate(self, entry: ContentEntry, context: Any) -> bool:
        for child in self.children:
            if child.evaluate(entry, context):
                return True
        return False

    def author_scope(self) -> Optional[FrozenSet[str]]:
        scopes = [child.author_scope() for child in self.children]
        if any(s is None for s in scopes):
            return None
        return frozenset().union(*scopes)


class FollowingScope(ExpressionNode):
    """Entries authored by someone the viewer follows; the empty tree."""

    @property
    def cost(self) -> float:
        return FOLLOWING_SCOPE_COST

    def evaluate(self, entry: ContentEntry, context: Any) -> bool:
        return context.follows(entry.author_id)

    def author_scope(self) -> Optional[FrozenSet[str]]:
        return None

    def describe(self, depth: int = 0) -> List[str]:
        return [f"{'  ' * depth}Posts from followed users  [cost {self.cost:g}]"]

    def to_dict(self) -> Dict[str, Any]:
        return {"type": "following", "cost": self.cost}


@dataclass(frozen=True)
class CompiledExpression:
    """
    Executable form of a feed's filter tree. Never persisted.

    Attributes:
        root: Root node of the boolean tree
        compiler_version: Version of the compiler that produced it
        block_count: Number of source blocks
        fingerprint: Stable hash of the source blocks
    """
    root: ExpressionNode
    compiler_version: str = COMPILER_VERSION
    block_count: int = 0
    fingerprint: str = ""

    @property
    def is_following_scope(self) -> bool:
        return isinstance(self.root, FollowingScope)

    @property
    def cost(self) -> float:
        return self.root.cost

    def matches(self, entry: ContentEntry, context: Any) -> bool:
        return self.root.evaluate(entry, context)

    def author_scope(self) -> Optional[FrozenSet[str]]:
        return self.root.author_scope()

    def describe(self) -> str:
        return "\n".join(self.root.describe())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "compiler_version": self.compiler_version,
            "block_count": self.block_count,
            "fingerprint": self.fingerprint,
            "root": self.root.to_dict(),
        }
