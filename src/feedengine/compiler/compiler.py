"""
Filter Tree Compiler

Turns an ordered list of FilterBlocks into a CompiledExpression with fixed
precedence (NOT binds tightest, then AND, then OR), annotates every node with
its estimated cost, and reconciles author references against the social
context so that deleted authors never break a feed.
"""

import hashlib
import json
import logging
from dataclasses import dataclass, field
from typing import Any, FrozenSet, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from feedengine.compiler.expression import (
    COMPILER_VERSION,
    AndNode,
    CompiledExpression,
    ExpressionNode,
    FollowingScope,
    LeafNode,
    NotNode,
    OrNode,
)
from feedengine.core.config.models import CompilerConfig
from feedengine.core.exceptions import CorpusUnavailableError, TooManyBlocksError
from feedengine.core.monitoring.metrics import get_metrics_collector
from feedengine.filters.base import Connective, FilterBlock, FilterKind
from feedengine.filters.factory import FilterFactory
from feedengine.providers import SocialContext


logger = logging.getLogger(__name__)

RawBlocks = Iterable[Union[FilterBlock, Mapping[str, Any]]]


@dataclass
class CompileResult:
    """
    Outcome of a successful compilation.

    Attributes:
        expression: The executable tree
        performance_warning: Block count is above the warning threshold
        author_pruned: Some referenced authors no longer exist and were dropped
        pruned_authors: The dropped author ids
        blocks: Source blocks after pruning, suitable for persisting back
        notices: Human-readable notes for the builder UI
    """
    expression: CompiledExpression
    performance_warning: bool = False
    author_pruned: bool = False
    pruned_authors: FrozenSet[str] = frozenset()
    blocks: Tuple[FilterBlock, ...] = ()
    notices: List[str] = field(default_factory=list)


def fingerprint_blocks(blocks: Sequence[FilterBlock]) -> str:
    """Stable short hash of a block list."""
    payload = json.dumps([b.to_dict() for b in blocks], sort_keys=True, default=str)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()[:16]


def fold_operands(operands: Sequence[ExpressionNode], connectives: Sequence[Connective]) -> ExpressionNode:
    """
    Combine operands left to right with NOT > AND > OR precedence.

    `connectives[i]` joins `operands[i]` with `operands[i + 1]`; NOT reads
    as "AND NOT" and negates the operand that follows it.

    Args:
        operands: At least one node
        connectives: Exactly `len(operands) - 1` connectives

    Returns:
        Root of the folded subtree
    """
    if len(connectives) != len(operands) - 1:
        raise ValueError("Need one connective between each pair of operands")

    terms: List[List[ExpressionNode]] = [[operands[0]]]
    for connective, operand in zip(connectives, operands[1:]):
        if connective == Connective.OR:
            terms.append([operand])
        elif connective == Connective.NOT:
            terms[-1].append(_negate(operand))
        else:
            terms[-1].append(operand)

    conjunctions = [_conjoin(term) for term in terms]
    if len(conjunctions) == 1:
        return conjunctions[0]

    flattened: List[ExpressionNode] = []
    for node in conjunctions:
        if isinstance(node, OrNode):
            flattened.extend(node.children)
        else:
            flattened.append(node)
    return OrNode(flattened)


def _negate(node: ExpressionNode) -> ExpressionNode:
    if isinstance(node, NotNode):
        return node.child
    return NotNode(node)


def _conjoin(nodes: List[ExpressionNode]) -> ExpressionNode:
    if len(nodes) == 1:
        return nodes[0]
    flattened: List[ExpressionNode] = []
    for node in nodes:
        if isinstance(node, AndNode):
            flattened.extend(node.children)
        else:
            flattened.append(node)
    return AndNode(flattened)


class FilterTreeCompiler:
    """
    Compiles filter blocks into executable expressions.

    The compiler is stateless apart from its limits and can be shared
    between threads.
    """

    def __init__(self, config: Optional[CompilerConfig] = None):
        """
        Initialize the compiler.

        Args:
            config: Block limits; defaults to 20 blocks with a warning above 10
        """
        self.config = config or CompilerConfig()
        self._collector = get_metrics_collector()

    def compile(self, blocks: RawBlocks, social: Optional[SocialContext] = None) -> CompileResult:
        """
        Compile a block list.

        Args:
            blocks: FilterBlocks or raw block mappings in display order
            social: When given, author references are checked and stale ones pruned

        Returns:
            CompileResult with the expression and any warnings

        Raises:
            TooManyBlocksError: If the list exceeds the hard cap
            InvalidValueShapeError: If a block value or operator does not fit its kind
            UnknownFilterKindError: If a block names an unknown kind
            CorpusUnavailableError: If the social context fails during pruning
        """
        with self._collector.time_operation("compiler.compile"):
            raw_blocks = list(blocks)
            count = len(raw_blocks)
            if count > self.config.max_blocks:
                raise TooManyBlocksError(count, self.config.max_blocks)
            block_list = FilterFactory.create_blocks(raw_blocks)

            result = CompileResult(expression=None, blocks=tuple(block_list))
            if count > self.config.warn_blocks:
                result.performance_warning = True
                result.notices.append(
                    f"This feed has {count} filter blocks; feeds with more than "
                    f"{self.config.warn_blocks} may load slowly."
                )
                logger.warning(f"Compiling {count} filter blocks (warning threshold {self.config.warn_blocks})")

            if social is not None:
                block_list, pruned = self._prune_authors(block_list, social)
                if pruned:
                    result.author_pruned = True
                    result.pruned_authors = frozenset(pruned)
                    result.blocks = tuple(block_list)
                    result.notices.append(f"{len(pruned)} author(s) no longer exist and were removed.")
                    logger.info(f"Pruned {len(pruned)} stale author reference(s)")

            root = self._build_tree(block_list)
            result.expression = CompiledExpression(
                root=root,
                compiler_version=COMPILER_VERSION,
                block_count=count,
                fingerprint=fingerprint_blocks(block_list),
            )
            self._collector.increment("compiler.compiled")
            return result

    def _prune_authors(
        self,
        blocks: List[FilterBlock],
        social: SocialContext
    ) -> Tuple[List[FilterBlock], set]:
        pruned = set()
        updated = []
        for index, block in enumerate(blocks):
            if block.kind != FilterKind.AUTHOR_SET:
                updated.append(block)
                continue

            value = FilterFactory.create_from_block(block, block_index=index).value
            try:
                stale = {a for a in value.author_ids if not social.resolve_author(a)}
            except Exception as e:
                raise CorpusUnavailableError(f"Social context failed while resolving authors: {e}", cause=e) from e

            if stale:
                pruned.update(stale)
                block = FilterBlock(
                    kind=block.kind,
                    operator=block.operator,
                    value=value.without(stale),
                    group_id=block.group_id,
                    connective=block.connective,
                    order=block.order,
                    negate=block.negate,
                )
            updated.append(block)
        return updated, pruned

    def _build_tree(self, blocks: List[FilterBlock]) -> ExpressionNode:
        if not blocks:
            return FollowingScope()

        # Consecutive blocks sharing a group id form one parenthesised operand.
        groups: List[Tuple[ExpressionNode, Connective]] = []
        start = 0
        for end in range(1, len(blocks) + 1):
            if end == len(blocks) or blocks[end].group_id != blocks[start].group_id:
                members = blocks[start:end]
                operands = [self._leaf(block, start + offset) for offset, block in enumerate(members)]
                connectives = [block.connective for block in members[:-1]]
                groups.append((fold_operands(operands, connectives), members[-1].connective))
                start = end

        operands = [node for node, _ in groups]
        connectives = [connective for _, connective in groups[:-1]]
        return fold_operands(operands, connectives)

    @staticmethod
    def _leaf(block: FilterBlock, index: int) -> ExpressionNode:
        node = LeafNode(FilterFactory.create_from_block(block, block_index=index), order=block.order)
        if block.negate:
            return NotNode(node)
        return node
