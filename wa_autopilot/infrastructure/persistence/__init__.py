from .database import (
    Product,
    ProductRepository,
    ProductStoreError,
    DuplicateProductError,
    validate_product_input,
    sanitize_product_data,
)

__all__ = [
    "Product",
    "ProductRepository",
    "ProductStoreError",
    "DuplicateProductError",
    "validate_product_input",
    "sanitize_product_data",
]
