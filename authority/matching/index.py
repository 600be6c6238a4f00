"""
Product index
=============
In-memory snapshot of the product set that the matcher reads from:
GTIN lookup, a trigram inverted index for fuzzy candidate selection and
the supplier SKU mappings confirmed by humans.

The snapshot is built once per import batch. Products created during the
batch are added with add() so later rows in the same batch can match them.
"""

import logging
from collections import defaultdict
from typing import Dict, FrozenSet, Iterable, List, Optional, Set, Tuple

from authority.matching.similarity import name_trigrams
from authority.models import Product

logger = logging.getLogger(__name__)


class ProductIndex:

    def __init__(
        self,
        products: Iterable[Product] = (),
        sku_mappings: Optional[Dict[Tuple[str, str], str]] = None
    ):
        self._products: Dict[str, Product] = {}
        self._by_gtin: Dict[str, str] = {}
        self._trigrams: Dict[str, FrozenSet[str]] = {}
        self._postings: Dict[str, Set[str]] = defaultdict(set)
        self._sku_mappings: Dict[Tuple[str, str], str] = dict(sku_mappings or {})
        for product in products:
            self.add(product)

    @classmethod
    def from_repository(cls, repository, supplier_id: Optional[str] = None) -> "ProductIndex":
        """Snapshot all products, plus the SKU mappings of one supplier"""
        products = repository.list_products()
        mappings = {}
        if supplier_id:
            mappings = {
                (supplier_id, sku): product_id
                for sku, product_id in repository.list_sku_mappings(supplier_id).items()
            }
        index = cls(products, mappings)
        logger.info(f"Product index built: {len(index)} products, {len(mappings)} SKU mappings")
        return index

    def __len__(self) -> int:
        return len(self._products)

    def __contains__(self, product_id: str) -> bool:
        return product_id in self._products

    def add(self, product: Product) -> None:
        if product.id in self._products:
            self.remove(product.id)
        self._products[product.id] = product
        if product.gtin:
            self._by_gtin[product.gtin] = product.id
        grams = name_trigrams(product.name)
        self._trigrams[product.id] = grams
        for gram in grams:
            self._postings[gram].add(product.id)

    def remove(self, product_id: str) -> None:
        product = self._products.pop(product_id, None)
        if product is None:
            return
        if product.gtin and self._by_gtin.get(product.gtin) == product_id:
            del self._by_gtin[product.gtin]
        for gram in self._trigrams.pop(product_id, frozenset()):
            self._postings[gram].discard(product_id)

    def add_sku_mapping(self, supplier_id: str, supplier_sku: str, product_id: str) -> None:
        self._sku_mappings[(supplier_id, supplier_sku)] = product_id

    def get(self, product_id: str) -> Optional[Product]:
        return self._products.get(product_id)

    def by_gtin(self, gtin: str) -> Optional[Product]:
        product_id = self._by_gtin.get(gtin)
        return self._products.get(product_id) if product_id else None

    def by_sku(self, supplier_id: Optional[str], supplier_sku: Optional[str]) -> Optional[Product]:
        if not supplier_id or not supplier_sku:
            return None
        product_id = self._sku_mappings.get((supplier_id, supplier_sku))
        return self._products.get(product_id) if product_id else None

    def trigrams_of(self, product_id: str) -> FrozenSet[str]:
        return self._trigrams.get(product_id, frozenset())

    def fuzzy_candidates(self, grams: FrozenSet[str]) -> List[Product]:
        """Products sharing at least one trigram with the query"""
        ids: Set[str] = set()
        for gram in grams:
            ids.update(self._postings.get(gram, ()))
        return [self._products[i] for i in ids]
