"""
Catalog models - medicines and pharmacy products.
"""
from decimal import Decimal

from django.db import models
from django.utils.translation import gettext_lazy as _

from .domain import CatalogProduct


class Product(models.Model):
    """Product sold through the marketplace and priced by the engines."""

    product_id = models.CharField(_('Product ID'), max_length=64, primary_key=True)
    name = models.CharField(_('Name'), max_length=255)
    manufacturer = models.CharField(_('Manufacturer'), max_length=255, blank=True)
    active_ingredient = models.CharField(_('Active ingredient'), max_length=255, blank=True)
    dosage = models.CharField(_('Dosage'), max_length=100, blank=True)
    category = models.CharField(_('Category'), max_length=100, blank=True)
    unit_type = models.CharField(_('Unit type'), max_length=20, default='box')
    requires_prescription = models.BooleanField(_('Requires prescription'), default=False)

    price = models.DecimalField(_('Price'), max_digits=10, decimal_places=2, default=Decimal('0.00'))

    is_active = models.BooleanField(_('Active'), default=True)
    created_at = models.DateTimeField(_('Created At'), auto_now_add=True)
    updated_at = models.DateTimeField(_('Updated At'), auto_now=True)

    class Meta:
        db_table = 'catalog_products'
        ordering = ['name']
        indexes = [
            models.Index(fields=['name']),
            models.Index(fields=['category']),
        ]
        constraints = [
            models.CheckConstraint(condition=models.Q(price__gte=0), name='catalog_product_price_non_negative'),
        ]
        verbose_name = _('Product')
        verbose_name_plural = _('Products')

    def __str__(self):
        return f"{self.name} ({self.product_id})"

    def to_domain(self) -> CatalogProduct:
        return CatalogProduct(
            product_id=self.product_id,
            name=self.name,
            price=self.price,
            manufacturer=self.manufacturer,
            active_ingredient=self.active_ingredient,
            dosage=self.dosage,
            category=self.category,
            unit_type=self.unit_type,
            requires_prescription=self.requires_prescription,
        )
