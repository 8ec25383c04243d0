import datetime as dt
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from models import AddedBy, TransactionKind, VendorType

# 10 billion in major units; keeps amounts well inside a signed 64-bit column
MAX_AMOUNT_CENTS = 1_000_000_000_000


class VendorIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    type: VendorType


class VendorUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    type: Optional[VendorType] = None


class CategoryIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    color: str = Field(..., max_length=7)
    icon: Optional[str] = Field(default=None, max_length=50)


class CategoryUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    color: Optional[str] = Field(default=None, max_length=7)
    icon: Optional[str] = Field(default=None, max_length=50)


class TagIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=50)
    color: str = Field(..., max_length=7)


class TagUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = Field(default=None, min_length=1, max_length=50)
    color: Optional[str] = Field(default=None, max_length=7)


class TransactionIn(BaseModel):
    amount_cents: int = Field(..., gt=0, le=MAX_AMOUNT_CENTS)
    date: dt.date
    kind: TransactionKind = TransactionKind.expense
    category_id: Optional[int] = None
    vendor_id: Optional[int] = None
    comment: Optional[str] = Field(default=None, max_length=500)
    paid_by_card: bool = True
    added_by: AddedBy = AddedBy.he
    tag_ids: list[int] = Field(default_factory=list)


class TransactionUpdate(BaseModel):
    """Partial update: only fields present in the payload are applied.

    An explicit ``null`` clears ``category_id``, ``vendor_id`` and ``comment``;
    ``tag_ids`` replaces the whole tag set (``[]`` clears it).
    """

    model_config = ConfigDict(extra="forbid")

    amount_cents: Optional[int] = Field(default=None, gt=0, le=MAX_AMOUNT_CENTS)
    date: Optional[dt.date] = None
    kind: Optional[TransactionKind] = None
    category_id: Optional[int] = None
    vendor_id: Optional[int] = None
    comment: Optional[str] = Field(default=None, max_length=500)
    paid_by_card: Optional[bool] = None
    added_by: Optional[AddedBy] = None
    tag_ids: Optional[list[int]] = None


class CSVRow(BaseModel):
    row: int
    date: dt.date
    kind: TransactionKind
    amount_cents: int = Field(..., gt=0, le=MAX_AMOUNT_CENTS)
    category: Optional[str]
    vendor: Optional[str]
    vendor_type: Optional[VendorType]
    paid_by_card: bool
    added_by: AddedBy
    tags: list[str] = Field(default_factory=list)
    comment: Optional[str]
