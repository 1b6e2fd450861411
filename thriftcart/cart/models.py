"""Cart, wishlist and session models with Decimal-based pricing."""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Iterator, List, Optional

from thriftcart.money import multiply, round_money, to_decimal, to_float


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class CartLine:
    """Single (product, size) line in the cart."""
    product_id: str
    name: str
    unit_price: Decimal
    size: str
    quantity: int = 1
    image: str = ""

    def __post_init__(self):
        self.unit_price = to_decimal(self.unit_price)

    @property
    def key(self) -> tuple[str, str]:
        return (self.product_id, self.size)

    @property
    def line_total(self) -> Decimal:
        """Price for all units of this line."""
        return multiply(self.unit_price, self.quantity)

    def to_dict(self) -> dict:
        """Convert to the camelCase shape shared by local storage and the backend."""
        return {
            "productId": self.product_id,
            "name": self.name,
            "price": to_float(self.unit_price),
            "size": self.size,
            "image": self.image,
            "quantity": self.quantity,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "CartLine":
        """Create from dictionary. Older local carts stored the product under ``id``."""
        product_id = data.get("productId") or data.get("id")
        if not product_id:
            raise KeyError("productId")
        return cls(
            product_id=str(product_id),
            name=data.get("name") or "",
            unit_price=to_decimal(data.get("price")),
            size=data.get("size") or "",
            quantity=int(data.get("quantity", 1)),
            image=data.get("image") or "",
        )


@dataclass
class CartState:
    """
    Ordered cart lines.

    The total is derived from the lines on every access, so it can never
    go stale after a mutation.
    """
    items: List[CartLine] = field(default_factory=list)

    def __iter__(self) -> Iterator[CartLine]:
        return iter(self.items)

    def __len__(self) -> int:
        return len(self.items)

    @property
    def is_empty(self) -> bool:
        return not self.items

    @property
    def total(self) -> Decimal:
        """Sum of unit_price * quantity over all lines."""
        return round_money(sum((line.line_total for line in self.items), Decimal("0")))

    @property
    def item_count(self) -> int:
        """Total number of units in the cart."""
        return sum(line.quantity for line in self.items)

    def find(self, product_id: str, size: str) -> Optional[CartLine]:
        return next(
            (line for line in self.items if line.product_id == product_id and line.size == size),
            None,
        )

    def merge_line(self, line: CartLine) -> CartLine:
        """Add a line, accumulating quantity onto an existing (product, size) line."""
        existing = self.find(line.product_id, line.size)
        if existing:
            existing.quantity += line.quantity
            return existing
        self.items.append(line)
        return line

    def set_quantity(self, product_id: str, size: str, quantity: int) -> bool:
        """Set quantity directly; quantity <= 0 removes the line. Returns True if a line matched."""
        if quantity <= 0:
            return self.remove_line(product_id, size)
        line = self.find(product_id, size)
        if line is None:
            return False
        line.quantity = quantity
        return True

    def remove_line(self, product_id: str, size: str) -> bool:
        before = len(self.items)
        self.items = [
            line for line in self.items
            if not (line.product_id == product_id and line.size == size)
        ]
        return len(self.items) != before

    def copy(self) -> "CartState":
        return CartState(items=[CartLine(**vars(line)) for line in self.items])

    def to_dict(self) -> dict:
        """Convert to dictionary for local storage."""
        return {
            "items": [line.to_dict() for line in self.items],
            "totalAmount": to_float(self.total),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "CartState":
        """
        Create from dictionary.

        Any persisted ``totalAmount`` is ignored; duplicate (product, size)
        lines coming from older clients are folded together, and lines with
        a quantity below 1 are dropped.
        """
        if not isinstance(data, dict):
            raise TypeError("cart must be an object")
        state = cls()
        for raw in data.get("items") or []:
            line = CartLine.from_dict(raw)
            if line.quantity < 1:
                continue
            state.merge_line(line)
        return state


def _first_image(data: dict) -> str:
    image = data.get("image")
    if image:
        return str(image)
    images = data.get("images") or []
    if images:
        first = images[0]
        if isinstance(first, dict):
            return str(first.get("url") or "")
        return str(first)
    return ""


@dataclass
class WishlistEntry:
    """Product saved for later."""
    product_id: str
    name: str = ""
    unit_price: Decimal = Decimal("0")
    image: str = ""
    added_at: str = ""

    def __post_init__(self):
        if not self.added_at:
            self.added_at = _utc_now()
        self.unit_price = to_decimal(self.unit_price)

    @property
    def has_details(self) -> bool:
        return bool(self.name)

    def to_dict(self) -> dict:
        return {
            "productId": self.product_id,
            "name": self.name,
            "price": to_float(self.unit_price),
            "image": self.image,
            "addedAt": self.added_at,
        }

    @classmethod
    def from_dict(cls, data: Any) -> "WishlistEntry":
        """
        Create from a stored entry or a backend payload item.

        The backend may answer with bare product ids or with populated
        product documents (``_id``, ``images``), so both are accepted.
        """
        if isinstance(data, str):
            if not data:
                raise ValueError("empty product id")
            return cls(product_id=data)
        if not isinstance(data, dict):
            raise TypeError("wishlist entry must be an object or a product id")
        product_id = data.get("productId") or data.get("_id") or data.get("id")
        if not product_id:
            raise KeyError("productId")
        return cls(
            product_id=str(product_id),
            name=data.get("name") or "",
            unit_price=to_decimal(data.get("price")),
            image=_first_image(data),
            added_at=data.get("addedAt") or "",
        )


@dataclass
class WishlistState:
    """Wishlist entries, unique by product id, in insertion order."""
    entries: List[WishlistEntry] = field(default_factory=list)

    def __iter__(self) -> Iterator[WishlistEntry]:
        return iter(self.entries)

    def __len__(self) -> int:
        return len(self.entries)

    @property
    def is_empty(self) -> bool:
        return not self.entries

    def contains(self, product_id: str) -> bool:
        return self.get(product_id) is not None

    def get(self, product_id: str) -> Optional[WishlistEntry]:
        return next((e for e in self.entries if e.product_id == product_id), None)

    def add(self, entry: WishlistEntry) -> bool:
        """Insert unless the product is already present. Returns True if inserted."""
        if self.contains(entry.product_id):
            return False
        self.entries.append(entry)
        return True

    def remove(self, product_id: str) -> bool:
        before = len(self.entries)
        self.entries = [e for e in self.entries if e.product_id != product_id]
        return len(self.entries) != before

    def enrich_from(self, known: "WishlistState") -> "WishlistState":
        """Fill in name/price/image for id-only entries from a locally known wishlist."""
        for entry in self.entries:
            if entry.has_details:
                continue
            local = known.get(entry.product_id)
            if local is not None:
                entry.name = local.name
                entry.unit_price = local.unit_price
                entry.image = local.image
                entry.added_at = local.added_at
        return self

    def copy(self) -> "WishlistState":
        return WishlistState(entries=[WishlistEntry(**vars(e)) for e in self.entries])

    def to_list(self) -> list:
        return [e.to_dict() for e in self.entries]

    @classmethod
    def from_list(cls, data: Any) -> "WishlistState":
        if not isinstance(data, list):
            raise TypeError("wishlist must be a list")
        state = cls()
        for raw in data:
            state.add(WishlistEntry.from_dict(raw))
        return state


@dataclass(frozen=True)
class SessionIdentity:
    """Authenticated account as handed over by the auth layer."""
    account_id: str
    bearer_token: str
    display_name: str = ""

    def to_user_dict(self) -> dict:
        """Snapshot stored under the ``user`` key."""
        return {"id": self.account_id, "name": self.display_name}
