import datetime as dt
from typing import Annotated, Any, Optional

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field

from models import EntryKind, new_id
from money import AmountInput

Kind = Annotated[EntryKind, BeforeValidator(EntryKind.normalize)]


def _typed_cents(value: Any) -> Any:
    # Text comes from the masked amount field: digits are cents, "-" alone is zero.
    if isinstance(value, str):
        return AmountInput.from_text(value).cents
    return value


SignedCents = Annotated[int, BeforeValidator(_typed_cents)]


class PurchaseIntent(BaseModel):
    """Everything needed to create one purchase, before expansion.

    ``date`` is the purchase day as typed; the stored billing date is
    resolved from the account's closing day.
    """

    date: dt.date
    kind: Kind
    amount_cents: int
    description: str = Field(default="", max_length=200)
    category_id: str = ""
    account_id: str = ""
    paid_card_id: Optional[str] = None
    destination_account_id: Optional[str] = None
    total_installments: int = 1


class BillItem(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str = Field(default_factory=new_id)
    description: str = ""
    amount_cents: SignedCents = 0
    category_id: str = ""


class PurchaseEdit(BaseModel):
    entry_id: str
    description: Optional[str] = None
    amount_cents: Annotated[Optional[int], BeforeValidator(_typed_cents)] = None


class ReconcileDraft(BaseModel):
    manual_items: list[BillItem] = Field(default_factory=list)
    purchase_edits: list[PurchaseEdit] = Field(default_factory=list)


class ReconcileCommand(ReconcileDraft):
    bill_id: str


class EntryUpdate(BaseModel):
    date: Optional[dt.date] = None
    description: Optional[str] = Field(default=None, max_length=200)
    amount_cents: Optional[int] = Field(default=None, gt=0)
    category_id: Optional[str] = None
    account_id: Optional[str] = None


class AccountIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    is_credit_card: bool = False
    is_active: bool = True
    initial_balance_cents: int = 0
    initial_balance_date: Optional[dt.date] = None
    closing_day: Optional[int] = None


class AccountUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    is_active: Optional[bool] = None
    initial_balance_cents: Optional[int] = None
    initial_balance_date: Optional[dt.date] = None
    closing_day: Optional[int] = None


class CategoryIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    kind: Kind
    is_active: bool = True


class CategoryUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    kind: Optional[Kind] = None
    is_active: Optional[bool] = None
