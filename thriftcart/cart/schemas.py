"""
Cart API Pydantic Models

Boundary schemas shared by the sync client and the reference backend.
Wire format is camelCase (productId, price, image); Python side is snake_case.
"""
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_serializer, field_validator

from thriftcart.errors import CartValidationError
from thriftcart.money import to_float
from .models import CartLine, CartState, WishlistEntry, WishlistState


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


# ==================== INPUT MODELS ====================

class CartLineInput(_WireModel):
    product_id: str = Field(alias="productId")
    name: str
    unit_price: Decimal = Field(alias="price", ge=0)
    size: str
    image: str = ""
    quantity: int = Field(default=1, ge=1)

    @field_validator("product_id", "name", "size")
    @classmethod
    def check_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must be a non-empty string")
        return value

    def to_line(self) -> CartLine:
        return CartLine(
            product_id=self.product_id,
            name=self.name,
            unit_price=self.unit_price,
            size=self.size,
            quantity=self.quantity,
            image=self.image,
        )


class WishlistEntryInput(_WireModel):
    product_id: str = Field(alias="productId")
    name: str = ""
    unit_price: Decimal = Field(default=Decimal("0"), alias="price", ge=0)
    image: str = ""

    @field_validator("product_id")
    @classmethod
    def check_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must be a non-empty string")
        return value

    def to_entry(self) -> WishlistEntry:
        return WishlistEntry(
            product_id=self.product_id,
            name=self.name,
            unit_price=self.unit_price,
            image=self.image,
        )


def _validate(model: type[BaseModel], data: Any) -> Any:
    if isinstance(data, model):
        return data
    if hasattr(data, "to_dict"):
        data = data.to_dict()
    try:
        return model.model_validate(data)
    except ValidationError as e:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
        raise CartValidationError(f"Invalid {model.__name__}: {fields}") from e


def parse_line_input(data: Any) -> CartLineInput:
    """Validate a cart line coming from the UI layer; raises CartValidationError."""
    return _validate(CartLineInput, data)


def parse_wishlist_input(data: Any) -> WishlistEntryInput:
    """Validate a wishlist entry coming from the UI layer; raises CartValidationError."""
    return _validate(WishlistEntryInput, data)


# ==================== REQUEST MODELS ====================

class AddToCartRequest(_WireModel):
    product_id: str = Field(alias="productId", min_length=1)
    name: str = Field(min_length=1)
    price: Decimal = Field(ge=0)
    size: str = Field(min_length=1)
    image: str = ""
    quantity: int = Field(default=1, ge=1)

    @field_serializer("price")
    def serialize_price(self, value: Decimal) -> float:
        return to_float(value)

    @classmethod
    def from_line(cls, line: CartLine) -> "AddToCartRequest":
        return cls(
            product_id=line.product_id,
            name=line.name,
            price=line.unit_price,
            size=line.size,
            image=line.image,
            quantity=line.quantity,
        )


class UpdateCartItemRequest(_WireModel):
    product_id: str = Field(alias="productId", min_length=1)
    size: str = Field(min_length=1)
    quantity: int  # <= 0 removes the line


class RemoveCartItemRequest(_WireModel):
    product_id: str = Field(alias="productId", min_length=1)
    size: str = Field(min_length=1)


class WishlistItemRequest(_WireModel):
    product_id: str = Field(alias="productId", min_length=1)


def to_wire(request: BaseModel) -> dict:
    """Serialize a request model with camelCase keys and JSON-safe numbers."""
    return request.model_dump(mode="json", by_alias=True)


# ==================== RESPONSE MODELS ====================

class CartItemPayload(_WireModel):
    product_id: str = Field(alias="productId", min_length=1)
    name: str = ""
    price: Decimal = Decimal("0")
    size: str = ""
    image: str = ""
    quantity: int = Field(ge=1)


class CartPayload(_WireModel):
    items: list[CartItemPayload] = Field(default_factory=list)
    total_amount: Optional[Decimal] = Field(default=None, alias="totalAmount")

    def to_state(self) -> CartState:
        state = CartState()
        for item in self.items:
            state.merge_line(
                CartLine(
                    product_id=item.product_id,
                    name=item.name,
                    unit_price=item.price,
                    size=item.size,
                    quantity=item.quantity,
                    image=item.image,
                )
            )
        return state

    @classmethod
    def from_state(cls, state: CartState) -> "CartPayload":
        return cls.model_validate(state.to_dict())


class CartResponse(_WireModel):
    success: bool
    message: Optional[str] = None
    cart: Optional[CartPayload] = None


class CartCountResponse(_WireModel):
    success: bool
    message: Optional[str] = None
    count: int = 0


class WishlistResponse(_WireModel):
    success: bool
    message: Optional[str] = None
    wishlist: Optional[list[Any]] = None
    data: Optional[list[Any]] = None

    def to_state(self) -> WishlistState:
        items = self.wishlist if self.wishlist is not None else (self.data or [])
        return WishlistState.from_list(items)
