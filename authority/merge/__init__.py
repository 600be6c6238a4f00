"""
Product Authority - Merge
=========================
Transactional merge of duplicate products.
"""

from authority.merge.operator import MergeResult, ProductMergeOperator

__all__ = [
    'MergeResult',
    'ProductMergeOperator',
]
