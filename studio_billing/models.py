"""
Domain Models for the Studio Billing Engine

These dataclasses provide type-safe representations of quotes, invoices and
billable expenses as exchanged with the persistence layer.
All monetary values use Decimal for precision.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from enum import Enum

from . import settings
from .errors import NotFoundError, ValidationError


def to_decimal(value, default: str = "0") -> Decimal:
    """Build a Decimal from any JSON scalar, going through str for exactness."""
    if value is None or value == "":
        return Decimal(default)
    try:
        return Decimal(str(value))
    except InvalidOperation:
        raise ValidationError(f"Not a valid number: {value!r}")


def optional_decimal(value) -> Decimal | None:
    if value is None or value == "":
        return None
    return to_decimal(value)


def parse_date(value) -> date | None:
    """Accept date objects or ISO strings (time part ignored)."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return datetime.strptime(str(value)[:10], "%Y-%m-%d").date()
    except ValueError:
        raise ValidationError(f"Not a valid date (expected YYYY-MM-DD): {value!r}")


def parse_enum(enum_cls, value, default=None):
    if value is None or value == "":
        return default
    text = str(value)
    for candidate in (text, text.upper(), text.lower()):
        try:
            return enum_cls(candidate)
        except ValueError:
            continue
    allowed = ", ".join(member.value for member in enum_cls)
    raise ValidationError(f"Invalid {enum_cls.__name__} {value!r}. Must be one of: {allowed}")


# =============================================================================
# ENUMERATIONS
# =============================================================================


class ItemType(str, Enum):
    SERVICE = "SERVICE"
    PRODUCT = "PRODUCT"
    FREE = "FREE"
    A_LA_CARTE = "A_LA_CARTE"


class BillingMode(str, Enum):
    FIXED = "FIXED"
    HOURLY = "HOURLY"


class CollaboratorType(str, Enum):
    OWNER = "OWNER"
    FREELANCER = "FREELANCER"


class DiscountType(str, Enum):
    PERCENTAGE = "PERCENTAGE"
    FIXED = "FIXED"


class QuoteStatus(str, Enum):
    DRAFT = "DRAFT"
    SENT = "SENT"
    VIEWED = "VIEWED"
    ACCEPTED = "ACCEPTED"
    REFUSED = "REFUSED"
    EXPIRED = "EXPIRED"


class InvoiceType(str, Enum):
    DEPOSIT = "DEPOSIT"
    PARTIAL = "PARTIAL"
    FINAL = "FINAL"
    STANDALONE = "STANDALONE"


class InvoiceStatus(str, Enum):
    DRAFT = "DRAFT"
    SENT = "SENT"
    PAID = "PAID"
    OVERDUE = "OVERDUE"
    CANCELLED = "CANCELLED"


class AmountMode(str, Enum):
    """How a FINAL invoice's base amount is entered."""

    PERCENTAGE = "percentage"
    FIXED = "fixed"


# =============================================================================
# QUOTE MODELS
# =============================================================================


@dataclass
class PriceVariant:
    """One alternative fixed price for a line item."""

    label: str
    price: Decimal

    @classmethod
    def from_dict(cls, data: dict) -> "PriceVariant":
        return cls(label=data.get("label", ""), price=to_decimal(data.get("price")))


@dataclass
class QuoteItem:
    """A priced line of a quote section."""

    id: str
    name: str
    item_types: frozenset = frozenset({ItemType.SERVICE})
    billing_mode: BillingMode = BillingMode.FIXED
    quantity: Decimal = Decimal("1")
    unit_price: Decimal = Decimal("0")
    hourly_rate: Decimal | None = None
    hours: Decimal | None = None
    include_in_total: bool = True
    is_selected: bool = True
    variants: list[PriceVariant] = field(default_factory=list)
    selected_variant: int | None = None
    # Informational only, never part of a total
    collaborator_type: CollaboratorType | None = None
    collaborator_name: str | None = None
    collaborator_amount: Decimal | None = None

    @property
    def is_free(self) -> bool:
        return ItemType.FREE in self.item_types

    @property
    def is_a_la_carte(self) -> bool:
        return ItemType.A_LA_CARTE in self.item_types

    @staticmethod
    def parse_item_types(data: dict) -> frozenset:
        """Read the item type set, expanding the legacy single ``item_type``."""
        if "item_types" in data and data["item_types"] is not None:
            raw = data["item_types"]
        elif data.get("item_type"):
            raw = [data["item_type"]]
        else:
            raw = [ItemType.SERVICE.value]
        return frozenset(parse_enum(ItemType, value) for value in raw)

    @classmethod
    def from_dict(cls, data: dict) -> "QuoteItem":
        selected_variant = data.get("selected_variant")
        return cls(
            id=str(data["id"]),
            name=data.get("name", ""),
            item_types=cls.parse_item_types(data),
            billing_mode=parse_enum(BillingMode, data.get("billing_mode"), BillingMode.FIXED),
            quantity=to_decimal(data.get("quantity"), default="1"),
            unit_price=to_decimal(data.get("unit_price")),
            hourly_rate=optional_decimal(data.get("hourly_rate")),
            hours=optional_decimal(data.get("hours")),
            include_in_total=data.get("include_in_total", True),
            is_selected=data.get("is_selected", True),
            variants=[PriceVariant.from_dict(v) for v in data.get("variants") or []],
            selected_variant=int(selected_variant) if selected_variant is not None else None,
            collaborator_type=parse_enum(CollaboratorType, data.get("collaborator_type")),
            collaborator_name=data.get("collaborator_name"),
            collaborator_amount=optional_decimal(data.get("collaborator_amount")),
        )


@dataclass
class QuoteSection:
    """An ordered group of items."""

    id: str
    title: str = ""
    items: list[QuoteItem] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict) -> "QuoteSection":
        return cls(
            id=str(data["id"]),
            title=data.get("title", ""),
            items=[QuoteItem.from_dict(i) for i in data.get("items", [])],
        )


@dataclass
class Discount:
    """A quote-level discount, always computed against the pre-discount subtotal."""

    type: DiscountType
    value: Decimal
    label: str = ""
    reason: str = ""

    @classmethod
    def from_dict(cls, data: dict) -> "Discount":
        if "type" not in data:
            raise ValidationError(f"Discount is missing its type: {data}")
        return cls(
            type=parse_enum(DiscountType, data["type"]),
            value=to_decimal(data.get("value")),
            label=data.get("label", ""),
            reason=data.get("reason", ""),
        )


@dataclass
class EndNote:
    """Display-only closing note."""

    title: str
    content: str

    @classmethod
    def from_dict(cls, data: dict) -> "EndNote":
        return cls(title=data.get("title", ""), content=data.get("content", ""))


@dataclass
class Quote:
    """A priced proposal and the invoices already raised against it."""

    id: str
    quote_number: str = ""
    status: QuoteStatus = QuoteStatus.DRAFT
    tps_rate: Decimal = settings.DEFAULT_TPS_RATE
    tvq_rate: Decimal = settings.DEFAULT_TVQ_RATE
    deposit_percent: Decimal = settings.DEFAULT_DEPOSIT_PERCENT
    discounts: list[Discount] = field(default_factory=list)
    sections: list[QuoteSection] = field(default_factory=list)
    subtotal: Decimal = Decimal("0")
    total: Decimal = Decimal("0")
    public_token: str | None = None
    end_notes: list[EndNote] = field(default_factory=list)
    valid_until: date | None = None
    client_code: str | None = None
    project_number: int | None = None
    invoices: list["Invoice"] = field(default_factory=list)

    @property
    def items(self) -> list[QuoteItem]:
        return [item for section in self.sections for item in section.items]

    def find_item(self, item_id: str) -> QuoteItem:
        for item in self.items:
            if item.id == item_id:
                return item
        raise NotFoundError(f"Item not found: {item_id}")

    @classmethod
    def from_dict(cls, data: dict) -> "Quote":
        project_number = data.get("project_number")
        return cls(
            id=str(data["id"]),
            quote_number=data.get("quote_number", ""),
            status=parse_enum(QuoteStatus, data.get("status"), QuoteStatus.DRAFT),
            tps_rate=to_decimal(data.get("tps_rate"), default=str(settings.DEFAULT_TPS_RATE)),
            tvq_rate=to_decimal(data.get("tvq_rate"), default=str(settings.DEFAULT_TVQ_RATE)),
            deposit_percent=to_decimal(
                data.get("deposit_percent"), default=str(settings.DEFAULT_DEPOSIT_PERCENT)
            ),
            discounts=[Discount.from_dict(d) for d in data.get("discounts") or []],
            sections=[QuoteSection.from_dict(s) for s in data.get("sections", [])],
            subtotal=to_decimal(data.get("subtotal")),
            total=to_decimal(data.get("total")),
            public_token=data.get("public_token"),
            end_notes=[EndNote.from_dict(n) for n in data.get("end_notes") or []],
            valid_until=parse_date(data.get("valid_until")),
            client_code=data.get("client_code"),
            project_number=int(project_number) if project_number is not None else None,
            invoices=[Invoice.from_dict(i) for i in data.get("invoices", [])],
        )


# =============================================================================
# INVOICE MODELS
# =============================================================================


@dataclass
class InvoiceItem:
    """An invoice line. ``total`` is always ``quantity x unit_price``."""

    description: str
    quantity: Decimal = Decimal("1")
    unit_price: Decimal = Decimal("0")
    total: Decimal = Decimal("0")
    sort_order: int = 0
    id: str | None = None

    def recompute(self) -> None:
        self.total = self.quantity * self.unit_price

    @classmethod
    def from_dict(cls, data: dict) -> "InvoiceItem":
        quantity = to_decimal(data.get("quantity"), default="1")
        unit_price = to_decimal(data.get("unit_price"))
        return cls(
            description=data.get("description", ""),
            quantity=quantity,
            unit_price=unit_price,
            total=quantity * unit_price,
            sort_order=int(data.get("sort_order", 0)),
            id=data.get("id"),
        )


@dataclass
class Invoice:
    """An invoice, standalone or raised against a quote."""

    id: str
    invoice_number: str = ""
    invoice_type: InvoiceType = InvoiceType.STANDALONE
    status: InvoiceStatus = InvoiceStatus.DRAFT
    subtotal: Decimal = Decimal("0")
    tps_amount: Decimal = Decimal("0")
    tvq_amount: Decimal = Decimal("0")
    total: Decimal = Decimal("0")
    amount_paid: Decimal = Decimal("0")
    tps_rate: Decimal = settings.DEFAULT_TPS_RATE
    tvq_rate: Decimal = settings.DEFAULT_TVQ_RATE
    late_fee_applied: bool = False
    late_fee_amount: Decimal = Decimal("0")
    issue_date: date | None = None
    due_date: date | None = None
    payment_date: date | None = None
    payment_method: str | None = None
    notes: str = ""
    quote_id: str | None = None
    is_number_reusable: bool = False
    items: list[InvoiceItem] = field(default_factory=list)

    @property
    def balance_due(self) -> Decimal:
        return self.total - self.amount_paid

    def find_item(self, item_id: str) -> InvoiceItem:
        for item in self.items:
            if item.id == item_id:
                return item
        raise NotFoundError(f"Item not found: {item_id}")

    @classmethod
    def from_dict(cls, data: dict) -> "Invoice":
        return cls(
            id=str(data["id"]),
            invoice_number=data.get("invoice_number", ""),
            invoice_type=parse_enum(InvoiceType, data.get("invoice_type"), InvoiceType.STANDALONE),
            status=parse_enum(InvoiceStatus, data.get("status"), InvoiceStatus.DRAFT),
            subtotal=to_decimal(data.get("subtotal")),
            tps_amount=to_decimal(data.get("tps_amount")),
            tvq_amount=to_decimal(data.get("tvq_amount")),
            total=to_decimal(data.get("total")),
            amount_paid=to_decimal(data.get("amount_paid")),
            tps_rate=to_decimal(data.get("tps_rate"), default=str(settings.DEFAULT_TPS_RATE)),
            tvq_rate=to_decimal(data.get("tvq_rate"), default=str(settings.DEFAULT_TVQ_RATE)),
            late_fee_applied=data.get("late_fee_applied", False),
            late_fee_amount=to_decimal(data.get("late_fee_amount")),
            issue_date=parse_date(data.get("issue_date")),
            due_date=parse_date(data.get("due_date")),
            payment_date=parse_date(data.get("payment_date")),
            payment_method=data.get("payment_method"),
            notes=data.get("notes") or "",
            quote_id=data.get("quote_id"),
            is_number_reusable=data.get("is_number_reusable", False),
            items=[InvoiceItem.from_dict(i) for i in data.get("items", [])],
        )


@dataclass
class BillableExpense:
    """A recorded project expense. Only ``is_billed`` / ``invoice_id`` are written by the engine."""

    id: str
    amount: Decimal
    description: str = ""
    vendor: str | None = None
    is_billable: bool = True
    is_billed: bool = False
    invoice_id: str | None = None

    @property
    def is_pending(self) -> bool:
        return self.is_billable and not self.is_billed

    @classmethod
    def from_dict(cls, data: dict) -> "BillableExpense":
        return cls(
            id=str(data["id"]),
            amount=to_decimal(data.get("amount")),
            description=data.get("description", ""),
            vendor=data.get("vendor"),
            is_billable=data.get("is_billable", True),
            is_billed=data.get("is_billed", False),
            invoice_id=data.get("invoice_id"),
        )


# =============================================================================
# REQUEST MODELS
# =============================================================================


@dataclass
class InvoiceRequest:
    """Invoice-from-quote creation request."""

    invoice_type: InvoiceType = InvoiceType.FINAL
    amount_mode: AmountMode = AmountMode.PERCENTAGE
    percentage: Decimal = Decimal("100")
    fixed_amount: Decimal | None = None
    expense_ids: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict) -> "InvoiceRequest":
        return cls(
            invoice_type=parse_enum(InvoiceType, data.get("invoice_type"), InvoiceType.FINAL),
            amount_mode=parse_enum(AmountMode, data.get("amount_mode"), AmountMode.PERCENTAGE),
            percentage=to_decimal(data.get("percentage"), default="100"),
            fixed_amount=optional_decimal(data.get("fixed_amount")),
            expense_ids=[str(e) for e in data.get("expense_ids") or []],
        )


@dataclass
class StandaloneInvoiceRequest:
    """Invoice raised directly on a project, with no quote behind it."""

    client_code: str | None = None
    project_number: int | None = None
    items: list[InvoiceItem] = field(default_factory=list)
    expense_ids: list[str] = field(default_factory=list)
    tps_rate: Decimal = settings.DEFAULT_TPS_RATE
    tvq_rate: Decimal = settings.DEFAULT_TVQ_RATE
    notes: str = ""

    @classmethod
    def from_dict(cls, data: dict) -> "StandaloneInvoiceRequest":
        project_number = data.get("project_number")
        return cls(
            client_code=data.get("client_code"),
            project_number=int(project_number) if project_number is not None else None,
            items=[InvoiceItem.from_dict(i) for i in data.get("items") or []],
            expense_ids=[str(e) for e in data.get("expense_ids") or []],
            tps_rate=to_decimal(data.get("tps_rate"), default=str(settings.DEFAULT_TPS_RATE)),
            tvq_rate=to_decimal(data.get("tvq_rate"), default=str(settings.DEFAULT_TVQ_RATE)),
            notes=data.get("notes") or "",
        )


@dataclass
class ApprovalSubmission:
    """Client choices sent with a public approval."""

    selections: dict[str, bool] = field(default_factory=dict)
    variant_selections: dict[str, int] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict) -> "ApprovalSubmission":
        return cls(
            selections={str(k): bool(v) for k, v in (data.get("selections") or {}).items()},
            variant_selections={
                str(k): int(v) for k, v in (data.get("variant_selections") or {}).items()
            },
        )


@dataclass
class Payment:
    """A payment recorded against an invoice."""

    amount: Decimal
    payment_date: date | None = None
    method: str | None = None

    @classmethod
    def from_dict(cls, data: dict) -> "Payment":
        return cls(
            amount=to_decimal(data.get("amount")),
            payment_date=parse_date(data.get("date")),
            method=data.get("method"),
        )


@dataclass
class ItemChange:
    """A single-field edit of a quote item, applied locally then persisted."""

    field: str
    value: object


# =============================================================================
# OUTPUT / RESULT MODELS
# =============================================================================


@dataclass
class DiscountDetail:
    """A discount and the amount it takes off the subtotal."""

    discount: Discount
    amount: Decimal


@dataclass
class PricingResult:
    """Totals of a quote for one selection context."""

    subtotal: Decimal = Decimal("0")
    discount_details: list[DiscountDetail] = field(default_factory=list)
    total_discount: Decimal = Decimal("0")
    after_discount: Decimal = Decimal("0")
    tps_amount: Decimal = Decimal("0")
    tvq_amount: Decimal = Decimal("0")
    total: Decimal = Decimal("0")
    deposit_amount: Decimal = Decimal("0")
    warnings: list[str] = field(default_factory=list)


@dataclass
class BalanceSummary:
    """How much of a quote has been invoiced and what may be invoiced next."""

    quote_total: Decimal
    total_invoiced: Decimal
    remaining_balance: Decimal
    has_deposit: bool
    is_fully_invoiced: bool
    expenses_only_mode: bool
    permitted_types: list[InvoiceType] = field(default_factory=list)
    existing_invoices: list[Invoice] = field(default_factory=list)


@dataclass
class GeneratedInvoice:
    """A freshly materialised invoice and the expenses it folded in."""

    invoice: Invoice
    base_amount: Decimal
    expenses_total: Decimal
    billed_expenses: list[BillableExpense] = field(default_factory=list)
    # Cancelled invoice whose number was taken over; its reusable flag is now cleared
    reclaimed_from: Invoice | None = None


@dataclass
class LateFeeStatus:
    """Late-fee view of an invoice at a given day."""

    days_overdue: int
    is_eligible: bool
    fee_amount: Decimal
    late_fee_applied: bool
    late_fee_amount: Decimal

