"""
Catalog lookup collaborator.

Engines depend on ``ProductCatalog.find_product`` only; they never see
the ORM model.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from apps.core.exceptions import NotFoundError, ValidationError
from apps.core.money import to_money


@dataclass(frozen=True)
class CatalogProduct:
    product_id: str
    name: str
    price: Decimal
    manufacturer: str = ''
    active_ingredient: str = ''
    dosage: str = ''
    category: str = ''
    unit_type: str = 'box'
    requires_prescription: bool = False

    def __post_init__(self):
        if not self.product_id:
            raise ValidationError('Catalog product requires an id')
        if not self.name:
            raise ValidationError(f'Catalog product {self.product_id} requires a name')
        object.__setattr__(self, 'price', to_money(self.price))
        if self.price < 0:
            raise ValidationError(f'Catalog product {self.product_id} has a negative price')


class ProductCatalog(ABC):
    @abstractmethod
    def find_product(self, product_id: str) -> CatalogProduct:
        """Return the product or raise NotFoundError."""

    def find_many(self, product_ids: Iterable[str]) -> List[CatalogProduct]:
        return [self.find_product(product_id) for product_id in product_ids]


class InMemoryProductCatalog(ProductCatalog):
    def __init__(self, products: Optional[Iterable[CatalogProduct]] = None):
        self._products: Dict[str, CatalogProduct] = {}
        for product in products or []:
            self.register(product)

    def register(self, product: CatalogProduct) -> CatalogProduct:
        self._products[product.product_id] = product
        return product

    def find_product(self, product_id: str) -> CatalogProduct:
        try:
            return self._products[product_id]
        except KeyError:
            raise NotFoundError('Product', product_id)
