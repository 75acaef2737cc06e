# pos_sync/pos_api/schemas.py
from typing import Any, ClassVar, Dict, List, Literal, Optional, Union
from pydantic import BaseModel, ConfigDict, Field, field_validator

# Enum-like Literals from API schema
OperationName = Literal['create', 'update', 'delete']


# --- Sync request ---
class SyncOperationPayload(BaseModel):
    """One entry of a sync batch. Delete operations carry only the id."""
    operation: OperationName
    id: str
    timestamp: str
    data: Optional[Dict[str, Any]] = None


class SyncBatchRequest(BaseModel):
    device_id: str
    operations: List[SyncOperationPayload] = Field(default_factory=list)


# --- Remote entity snapshots ---
class _Snapshot(BaseModel):
    """Server copy of an entity. Unknown fields are kept so newer servers don't break parsing."""
    model_config = ConfigDict(extra='allow', coerce_numbers_to_str=True)

    id: str

    def server_fields(self) -> Dict[str, Any]:
        """Columns the server owns, to be written onto the local row after a successful upload."""
        raise NotImplementedError


class CategorySnapshot(_Snapshot):
    name: Optional[str] = None
    description: Optional[str] = None
    is_active: bool = True
    sort_order: int = 0
    item_count: Optional[int] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    def server_fields(self) -> Dict[str, Any]:
        return {"server_updated_at": self.updated_at}

    def local_row(self) -> Dict[str, Any]:
        """Full local `categories` row for a downloaded category."""
        return {
            "id": self.id,
            "name": self.name or "",
            "description": self.description,
            "is_active": self.is_active,
            "sort_order": self.sort_order,
            "server_updated_at": self.updated_at,
            "created_at": self.created_at or self.updated_at,
            "updated_at": self.updated_at or self.created_at,
        }


class ItemSnapshot(_Snapshot):
    name: Optional[str] = None
    description: Optional[str] = None
    price: float = 0.0
    stock_quantity: int = 0
    sku: Optional[str] = None
    barcode: Optional[str] = None
    is_active: bool = True
    sort_order: int = 0
    vendor: Optional[str] = None
    category_ids: List[str] = Field(default_factory=list)
    image_url: Optional[str] = None
    last_updated: Optional[str] = None
    created_at: Optional[str] = None

    @field_validator('price', mode='before')
    @classmethod
    def _price_from_string(cls, value: Union[str, float, int, None]) -> float:
        # Decimal prices arrive as strings.
        if value is None or value == "":
            return 0.0
        return float(value)

    @field_validator('category_ids', mode='before')
    @classmethod
    def _none_to_empty(cls, value):
        return value or []

    def server_fields(self) -> Dict[str, Any]:
        return {"server_updated_at": self.last_updated, "image_url": self.image_url}

    def local_row(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name or "",
            "description": self.description,
            "price": self.price,
            "stock_quantity": self.stock_quantity,
            "sku": self.sku,
            "barcode": self.barcode,
            "is_active": self.is_active,
            "sort_order": self.sort_order,
            "vendor_id": self.vendor,
            "image_url": self.image_url,
            "server_updated_at": self.last_updated,
            "created_at": self.created_at or self.last_updated,
            "updated_at": self.last_updated or self.created_at,
        }


class BillLineItem(BaseModel):
    model_config = ConfigDict(extra='allow', coerce_numbers_to_str=True)

    item_id: Optional[str] = None
    name: Optional[str] = None
    price: float = 0.0
    quantity: float = 0
    subtotal: float = 0.0


class BillSnapshot(_Snapshot):
    bill_number: Optional[str] = None
    items: List[BillLineItem] = Field(default_factory=list)
    subtotal: float = 0.0
    tax_amount: float = 0.0
    discount_amount: float = 0.0
    total_amount: float = 0.0
    payment_method: Optional[str] = None
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    notes: Optional[str] = None
    timestamp: Optional[str] = None
    updated_at: Optional[str] = None

    def server_fields(self) -> Dict[str, Any]:
        fields = {"server_updated_at": self.updated_at or self.timestamp}
        if self.bill_number:
            fields["bill_number"] = self.bill_number
        return fields


SNAPSHOT_MODELS: Dict[str, type] = {
    "category": CategorySnapshot,
    "item": ItemSnapshot,
    "bill": BillSnapshot,
}


# --- Sync response ---
class SyncResponse(BaseModel):
    """Batch outcome. Snapshots arrive under the plural key of the kind that was synced."""
    model_config = ConfigDict(extra='ignore')

    synced: int = 0
    created: int = 0
    updated: int = 0
    deleted: int = 0
    categories: Optional[List[CategorySnapshot]] = None
    items: Optional[List[ItemSnapshot]] = None
    bills: Optional[List[BillSnapshot]] = None

    SNAPSHOT_KEYS: ClassVar[Dict[str, str]] = {"category": "categories", "item": "items", "bill": "bills"}

    def snapshots_for(self, kind: str) -> List[_Snapshot]:
        return getattr(self, self.SNAPSHOT_KEYS[kind]) or []
