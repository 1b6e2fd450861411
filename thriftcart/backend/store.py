"""In-memory per-account cart and wishlist storage for the reference backend."""
from typing import Dict, List

from thriftcart.cart.models import CartLine, CartState


class InMemoryCartStore:
    """Carts and wishlists keyed by account id. Created empty on first access."""

    def __init__(self) -> None:
        self.carts: Dict[str, CartState] = {}
        self.wishlists: Dict[str, List[str]] = {}

    def cart(self, account_id: str) -> CartState:
        return self.carts.setdefault(account_id, CartState())

    def wishlist(self, account_id: str) -> List[str]:
        return self.wishlists.setdefault(account_id, [])

    def add_line(self, account_id: str, line: CartLine) -> CartState:
        cart = self.cart(account_id)
        cart.merge_line(line)
        return cart

    def add_to_wishlist(self, account_id: str, product_id: str) -> List[str]:
        wishlist = self.wishlist(account_id)
        if product_id not in wishlist:
            wishlist.append(product_id)
        return wishlist

    def remove_from_wishlist(self, account_id: str, product_id: str) -> List[str]:
        wishlist = [pid for pid in self.wishlist(account_id) if pid != product_id]
        self.wishlists[account_id] = wishlist
        return wishlist
