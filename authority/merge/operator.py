"""
Product Merge Operator
======================
Folds a duplicate ("source") product into a canonical ("target") product
in one transaction:

1. Lock both products (id order) and re-verify they exist
2. Re-point the source's supplier items to the target. An active item whose
   supplier already has an active item on the target is deactivated and
   kept, inactive, on the target
3. Re-point the source's practice items. A practice that already has an
   item for the target keeps it; the source-side item is orphaned and
   removed with the source product
4. Delete the source's quality-score snapshot
5. Delete the source product

Any failure after the unit of work opens rolls everything back.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List

from authority.audit import AuditSink
from authority.errors import MergeFailedError, MergePreconditionError

logger = logging.getLogger(__name__)

ENTITY_PRODUCT = "product"


@dataclass
class MergeResult:
    source_product_id: str
    target_product_id: str
    moved_supplier_items: int = 0
    moved_practice_items: int = 0
    deactivated_supplier_items: int = 0
    orphaned_practice_item_ids: List[str] = field(default_factory=list)

    @property
    def merged_count(self) -> int:
        return self.moved_supplier_items + self.moved_practice_items

    def to_dict(self) -> Dict[str, Any]:
        return {
            'source_product_id': self.source_product_id,
            'target_product_id': self.target_product_id,
            'moved_supplier_items': self.moved_supplier_items,
            'moved_practice_items': self.moved_practice_items,
            'deactivated_supplier_items': self.deactivated_supplier_items,
            'orphaned_practice_item_ids': list(self.orphaned_practice_item_ids),
            'merged_count': self.merged_count,
        }


class ProductMergeOperator:

    def __init__(self, repository, audit_sink: AuditSink):
        self.repository = repository
        self.audit_sink = audit_sink

    def merge(self, source_id: str, target_id: str, actor_id: str = "system") -> MergeResult:
        """
        Merge source into target and delete source.

        Raises:
            MergePreconditionError: self-merge or a missing product; nothing was written
            MergeFailedError: the transaction failed and was rolled back
        """
        try:
            self._check_preconditions(source_id, target_id)
            with self.repository.unit_of_work() as uow:
                result = self._merge_locked(uow, source_id, target_id)
        except Exception as e:
            self._audit(
                "merge_products_failed", actor_id, source_id,
                {'target_product_id': target_id, 'error': str(e), 'error_type': type(e).__name__},
            )
            logger.error(f"Merge of product {source_id} into {target_id} failed: {e}")
            if isinstance(e, MergePreconditionError):
                raise
            raise MergeFailedError(
                f"Merge failed and was rolled back: {e}",
                {'source_product_id': source_id, 'target_product_id': target_id},
            ) from e

        if result.orphaned_practice_item_ids:
            logger.warning(
                f"Merge {source_id} -> {target_id} orphaned {len(result.orphaned_practice_item_ids)} "
                f"practice item(s), removed with the source product: {', '.join(result.orphaned_practice_item_ids)}"
            )
        self._audit("merge_products", actor_id, source_id, result.to_dict())
        logger.info(
            f"Merged product {source_id} into {target_id} by {actor_id}: "
            f"{result.moved_supplier_items} supplier items, {result.moved_practice_items} practice items moved, "
            f"{result.deactivated_supplier_items} supplier items deactivated"
        )
        return result

    def _audit(self, operation: str, actor_id: str, source_id: str, changes) -> None:
        """Audit failures are logged; they never replace the merge outcome"""
        try:
            self.audit_sink.record(operation, actor_id, ENTITY_PRODUCT, source_id, changes)
        except Exception as e:
            logger.error(f"Audit of {operation} for product {source_id} failed: {e}", exc_info=True)

    def _check_preconditions(self, source_id: str, target_id: str) -> None:
        if source_id == target_id:
            raise MergePreconditionError("Cannot merge a product with itself", {'product_id': source_id})
        if self.repository.find_product_by_id(source_id) is None:
            raise MergePreconditionError("Source product not found", {'product_id': source_id})
        if self.repository.find_product_by_id(target_id) is None:
            raise MergePreconditionError("Target product not found", {'product_id': target_id})

    def _merge_locked(self, uow, source_id: str, target_id: str) -> MergeResult:
        repo = uow.repository
        locked = {p.id for p in uow.lock_products([source_id, target_id])}
        if source_id not in locked:
            raise MergePreconditionError("Source product not found", {'product_id': source_id})
        if target_id not in locked:
            raise MergePreconditionError("Target product not found", {'product_id': target_id})

        result = MergeResult(source_product_id=source_id, target_product_id=target_id)

        # Deactivated and inactive items stay on the source and cascade away with it
        for item in repo.list_supplier_items_for_product(source_id, active_only=True):
            if repo.find_supplier_item(item.global_supplier_id, target_id, active_only=True):
                repo.update_supplier_item(item.id, {'is_active': False})
                result.deactivated_supplier_items += 1
            else:
                repo.update_supplier_item(item.id, {'product_id': target_id})
                result.moved_supplier_items += 1

        for practice_item in repo.list_practice_items_for_product(source_id):
            if repo.find_practice_item(practice_item.practice_id, target_id):
                result.orphaned_practice_item_ids.append(practice_item.id)
                continue
            repo.repoint_practice_item(practice_item.id, target_id)
            result.moved_practice_items += 1

        repo.delete_quality_score(source_id)
        repo.delete_product(source_id)
        return result
