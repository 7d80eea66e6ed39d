# Loss entry package
from .cart import (
    CartItem,
    LossCart,
    LOSS_REASONS,
    CONSUMPTION_REASONS,
    RESOLUTIONS,
    parse_quantity,
)

__all__ = [
    "CartItem",
    "LossCart",
    "LOSS_REASONS",
    "CONSUMPTION_REASONS",
    "RESOLUTIONS",
    "parse_quantity",
]
