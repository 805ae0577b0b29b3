from .product_context import ProductContextBuilder

__all__ = ["ProductContextBuilder"]
