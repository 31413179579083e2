"""
Criteria Evaluator
==================

Include-expression language deciding batch membership:
- lexer.py: tokenizer
- parser.py: expression tree
- evaluator.py: pure evaluation against an instance snapshot
- snapshot.py: instance -> attribute mapping
"""

from migration_manager.core.criteria.evaluator import (
    FUNCTIONS,
    CompiledExpression,
    compile_expression,
    evaluate,
    path_base,
    path_dir,
)
from migration_manager.core.criteria.snapshot import build_snapshot

__all__ = [
    "FUNCTIONS",
    "CompiledExpression",
    "build_snapshot",
    "compile_expression",
    "evaluate",
    "path_base",
    "path_dir",
]
