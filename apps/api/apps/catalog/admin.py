from django.contrib import admin

from .models import Product


@admin.register(Product)
class ProductAdmin(admin.ModelAdmin):
    list_display = ['product_id', 'name', 'category', 'price', 'requires_prescription', 'is_active']
    list_filter = ['category', 'requires_prescription', 'is_active']
    search_fields = ['product_id', 'name', 'active_ingredient', 'manufacturer']
