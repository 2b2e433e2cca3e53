"""
Filter Tree Compiler

Compiles user-authored filter blocks into cost-ordered boolean expressions.
"""

from .expression import (
    AndNode,
    CompiledExpression,
    ExpressionNode,
    FollowingScope,
    LeafNode,
    NotNode,
    OrNode,
)
from .compiler import CompileResult, FilterTreeCompiler, fingerprint_blocks, fold_operands

__all__ = [
    'AndNode',
    'CompiledExpression',
    'ExpressionNode',
    'FollowingScope',
    'LeafNode',
    'NotNode',
    'OrNode',
    'CompileResult',
    'FilterTreeCompiler',
    'fingerprint_blocks',
    'fold_operands',
]
