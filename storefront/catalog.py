"""
Product catalog. Two products: the fixed Old Main design and custom engravings.
"""
from dataclasses import dataclass
from decimal import Decimal

from .config import Settings
from .models import OrderType


@dataclass(frozen=True)
class Product:
    name: str
    description: str
    default_price: Decimal


def get_product(order_type: OrderType, settings: Settings) -> Product:
    """Look up the product sold for an order type."""
    if order_type == OrderType.CUSTOM_ENGRAVING:
        return Product(
            name=settings.custom_product_name,
            description=settings.custom_product_description,
            default_price=settings.custom_product_price,
        )
    return Product(
        name=settings.fixed_product_name,
        description=settings.fixed_product_description,
        default_price=settings.fixed_product_price,
    )
