"""Catalog services."""
from apps.core.exceptions import NotFoundError

from .domain import CatalogProduct, ProductCatalog
from .models import Product


class DjangoProductCatalog(ProductCatalog):
    """Looks products up in the catalog table; inactive products are not found."""

    def find_product(self, product_id: str) -> CatalogProduct:
        try:
            return Product.objects.get(product_id=product_id, is_active=True).to_domain()
        except Product.DoesNotExist:
            raise NotFoundError('Product', product_id)


def get_default_catalog() -> ProductCatalog:
    return DjangoProductCatalog()
