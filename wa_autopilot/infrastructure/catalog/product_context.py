"""
Product Context - Catalog Snippets for the System Prompt
=========================================================

Looks at an incoming message with simple keyword heuristics and, when it
smells like a commerce question, returns a block of product information to
append to the system prompt.

HEURISTICS:
- A product is "mentioned" if its name appears in the message, or the whole
  message appears in its name/description/category.
- Mentioned products win. Otherwise a commerce keyword plus a "complete
  list" keyword lists the whole catalog; a commerce keyword alone lists the
  first few available products.
- No commerce keyword and no mention -> empty context.
"""

import logging
from typing import List

from ..persistence import Product, ProductRepository

logger = logging.getLogger(__name__)

# English plus the Indonesian words customers actually type
PRODUCT_KEYWORDS = [
    "product", "price", "stock", "available", "catalog", "service", "order",
    "buy", "sell", "cost", "list", "all", "complete",
    "produk", "jual", "beli", "harga", "stok", "tersedia", "katalog",
    "layanan", "jasa", "pesan", "bisa", "ada", "punya", "jualan", "dagangan",
    "semua", "daftar", "lengkap",
]

COMPLETE_LIST_KEYWORDS = [
    "all", "list", "complete", "catalog", "semua", "daftar", "lengkap", "katalog",
]

CATEGORY_NAMES = {
    "product": "Product",
    "service": "Service",
    "digital": "Digital",
    "course": "Course",
    "other": "Other",
}

PREVIEW_LIMIT = 5

USAGE_INSTRUCTION = (
    "\n\nUse the product information above to answer the user naturally and "
    "helpfully. Do not sound like a robot."
)


class ProductContextBuilder:
    """
    Builds prompt context from the product repository.

    USAGE:
        builder = ProductContextBuilder(repo)
        context = builder.context_for("do you sell logo design?")
    """

    def __init__(self, repository: ProductRepository, currency: str = "Rp"):
        self._repository = repository
        self._currency = currency

    def format_price(self, price: int) -> str:
        if not price:
            return "Contact us for pricing"
        # id-ID style thousands separator
        return f"{self._currency} {price:,}".replace(",", ".")

    def format_product(self, product: Product) -> str:
        stock_info = "Unlimited" if product.stock == 0 else f"{product.stock} units available"
        lines = [
            f"{product.name} ({CATEGORY_NAMES.get(product.category, product.category)})",
            f"Description: {product.description}",
        ]
        if product.price:
            lines.append(f"Price: {self.format_price(product.price)}")
        lines.append(f"Stock: {stock_info}")
        if product.link:
            lines.append(f"Link: {product.link}")
        return "\n".join(lines)

    @staticmethod
    def find_mentioned(products: List[Product], message: str) -> List[Product]:
        lowered = message.lower().strip()
        if len(lowered) < 2:
            return []

        mentioned = []
        for product in products:
            name = product.name.lower()
            if (
                name in lowered
                or lowered in name
                or lowered in product.description.lower()
                or lowered in product.category.lower()
            ):
                mentioned.append(product)
        return mentioned

    def context_for(self, message: str) -> str:
        """Return a prompt block for the message, or '' when not relevant."""
        if not message or not message.strip():
            return ""

        products = self._repository.list_products()
        if not products:
            return ""

        lowered = message.lower()
        has_keyword = any(keyword in lowered for keyword in PRODUCT_KEYWORDS)

        mentioned = self.find_mentioned(products, message)
        if mentioned:
            blocks = [self.format_product(p) for p in mentioned]
            return "\n\n=== PRODUCTS MENTIONED ===\n" + "\n\n".join(blocks) + "\n"

        if not has_keyword:
            return ""

        if any(keyword in lowered for keyword in COMPLETE_LIST_KEYWORDS):
            blocks = [self.format_product(p) for p in products]
            return "\n\n=== COMPLETE PRODUCT & SERVICE LIST ===\n" + "\n\n".join(blocks) + "\n"

        available = [p for p in products if p.is_available][:PREVIEW_LIMIT]
        context = "\n\n=== AVAILABLE PRODUCTS & SERVICES ===\n"
        context += "\n\n".join(self.format_product(p) for p in available) + "\n"
        if len(products) > PREVIEW_LIMIT:
            context += (
                f"\nAnd {len(products) - PREVIEW_LIMIT} more products. "
                "Ask for \"the complete product list\" to see everything.\n"
            )
        return context

    def augment_prompt(self, system_prompt: str, message: str) -> str:
        """Append product context (and how to use it) to the system prompt."""
        context = self.context_for(message)
        if not context:
            return system_prompt
        logger.debug("Product context added to system prompt")
        return system_prompt + context + USAGE_INSTRUCTION
