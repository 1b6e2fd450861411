"""Cart package: models and boundary schemas."""
from .models import CartLine, CartState, WishlistEntry, WishlistState, SessionIdentity
from .schemas import CartLineInput, WishlistEntryInput, parse_line_input, parse_wishlist_input

__all__ = [
    "CartLine",
    "CartState",
    "WishlistEntry",
    "WishlistState",
    "SessionIdentity",
    "CartLineInput",
    "WishlistEntryInput",
    "parse_line_input",
    "parse_wishlist_input",
]
