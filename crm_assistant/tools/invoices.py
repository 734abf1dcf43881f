"""Invoice tools: listing, overdue tracking and draft invoice creation."""

import uuid
from datetime import date, timedelta
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from crm_assistant.data import customers as customer_queries
from crm_assistant.data import invoices as invoice_queries
from crm_assistant.data import users as user_queries
from crm_assistant.models.context import ExecutionContext
from crm_assistant.models.tool import EmptyParams, ToolDefinition, ToolGroup, ToolResult
from crm_assistant.tools.formatting import (
    dashboard_link,
    format_date,
    format_money,
    markdown_table,
    to_float,
)

DEFAULT_VAT_RATE = 20.0
DEFAULT_PAYMENT_TERM_DAYS = 30


class GetInvoicesParams(BaseModel):
    pageSize: int = Field(10, ge=1, le=50, description="Number of invoices to return")
    status: Optional[Literal["draft", "sent", "paid", "overdue", "cancelled", "partial"]] = Field(
        None, description="Filter by invoice status"
    )
    search: Optional[str] = Field(None, description="Search by invoice number")


class InvoiceItemParams(BaseModel):
    productName: str = Field(..., min_length=1, description="Name of the product or service")
    description: Optional[str] = Field(None, description="Optional line description")
    quantity: float = Field(1, gt=0, description="Quantity")
    unitPrice: float = Field(..., ge=0, description="Price per unit")
    discount: float = Field(0, ge=0, le=100, description="Discount percentage")


class CreateInvoiceParams(BaseModel):
    customerName: Optional[str] = Field(None, description="Customer/company name to search for")
    customerId: Optional[str] = Field(None, description="Customer/company ID if known")
    items: List[InvoiceItemParams] = Field(..., min_length=1, description="Invoice line items")
    dueDate: Optional[date] = Field(None, description="Due date in YYYY-MM-DD format")
    notes: Optional[str] = Field(None, description="Notes to include on the invoice")
    currency: Optional[str] = Field(None, description="Currency code, defaults to the company currency")
    vatRate: float = Field(DEFAULT_VAT_RATE, ge=0, le=100, description="VAT rate percentage")


def line_total(item: InvoiceItemParams) -> float:
    """quantity x unit price x (1 - discount/100)"""
    return item.quantity * item.unitPrice * (1 - item.discount / 100)


def compute_invoice_totals(items: List[InvoiceItemParams], vat_rate: float) -> Dict[str, float]:
    subtotal = sum(line_total(item) for item in items)
    tax = subtotal * (vat_rate / 100)
    return {"subtotal": round(subtotal, 2), "tax": round(tax, 2), "total": round(subtotal + tax, 2)}


def format_invoice_number(year: int, sequence: int) -> str:
    return f"INV-{year}-{sequence:05d}"


async def get_invoices(ctx: ExecutionContext, params: GetInvoicesParams) -> ToolResult:
    rows, total = await invoice_queries.list_invoices(
        ctx.tenant_id, page_size=params.pageSize, status=params.status, search=params.search
    )
    if not rows:
        return ToolResult(text="No invoices found matching your criteria.")

    table = markdown_table(
        ["Invoice #", "Customer", "Status", "Amount", "Due Date"],
        [
            (
                row["invoice_number"] or "Draft",
                row.get("customer_name") or "N/A",
                row["status"],
                format_money(row["total"], row.get("currency") or ctx.base_currency, ctx.locale),
                format_date(row.get("due_date"), ctx.locale),
            )
            for row in rows
        ],
    )
    total_amount = sum(to_float(row["total"]) for row in rows)
    paid = sum(1 for row in rows if row["status"] == "paid")
    overdue = sum(1 for row in rows if row["status"] == "overdue")
    pending = sum(1 for row in rows if row["status"] in ("sent", "partial"))
    summary = (
        f"**Summary**: {total} total invoices | Shown: "
        f"{format_money(total_amount, rows[0].get('currency') or ctx.base_currency, ctx.locale)} | "
        f"Paid: {paid} | Pending: {pending} | Overdue: {overdue}"
    )
    return ToolResult(
        text=f"{table}\n\n{summary}",
        link=dashboard_link("sales/invoices", "View all invoices"),
    )


async def get_overdue_invoices(ctx: ExecutionContext, params: EmptyParams) -> ToolResult:
    rows = await invoice_queries.overdue_invoices(ctx.tenant_id)
    if not rows:
        return ToolResult(text="Great news! No overdue invoices found.")

    today = ctx.current_datetime.date()
    table_rows = []
    outstanding_total = 0.0
    for row in rows:
        outstanding = to_float(row["total"]) - to_float(row.get("paid_amount"))
        outstanding_total += outstanding
        due = row["due_date"]
        days_overdue = (today - due).days if isinstance(due, date) else "?"
        table_rows.append((
            row["invoice_number"],
            row.get("customer_name") or "N/A",
            format_money(outstanding, row.get("currency") or ctx.base_currency, ctx.locale),
            format_date(due, ctx.locale),
            f"{days_overdue} days",
        ))

    text = (
        "⚠️ **Overdue Invoices**\n\n"
        + markdown_table(["Invoice #", "Customer", "Outstanding", "Due Date", "Days Overdue"], table_rows)
        + f"\n\n**Total Outstanding**: {format_money(outstanding_total, ctx.base_currency, ctx.locale)}"
        f" across {len(rows)} invoices"
    )
    return ToolResult(text=text, link=dashboard_link("sales/invoices?status=overdue", "View overdue invoices"))


async def _resolve_customer(ctx: ExecutionContext, params: CreateInvoiceParams) -> Any:
    """Returns the customer row, or a message string when no single customer is identified."""
    if params.customerId:
        customer = await customer_queries.get_customer(ctx.tenant_id, params.customerId)
        if not customer:
            return f"❌ No customer found with ID {params.customerId}."
        return customer
    if params.customerName:
        matches = await customer_queries.find_customers_by_name(ctx.tenant_id, params.customerName)
        if not matches:
            return (
                f'❌ No customer found matching "{params.customerName}". '
                "Please provide a valid customer name or ID."
            )
        if len(matches) > 1:
            listing = "\n".join(f"- {m['name']} (ID: {m['id']})" for m in matches)
            return (
                f'⚠️ Multiple customers found matching "{params.customerName}":\n{listing}\n\n'
                "Please specify the exact customer ID."
            )
        return matches[0]
    return "❌ Please provide either customerName or customerId to create an invoice."


async def create_invoice(ctx: ExecutionContext, params: CreateInvoiceParams) -> ToolResult:
    customer = await _resolve_customer(ctx, params)
    if isinstance(customer, str):
        return ToolResult(text=customer)

    creator_id = await user_queries.find_acting_user(ctx.tenant_id)
    if not creator_id:
        return ToolResult(text="❌ No users found for this tenant. Cannot create invoice.")

    currency = params.currency or ctx.base_currency
    totals = compute_invoice_totals(params.items, params.vatRate)
    today = ctx.current_datetime.date()
    due_date = params.dueDate or today + timedelta(days=DEFAULT_PAYMENT_TERM_DAYS)
    sequence = await invoice_queries.count_invoices_in_year(ctx.tenant_id, today.year) + 1
    invoice_number = format_invoice_number(today.year, sequence)
    invoice_id = str(uuid.uuid4())

    items = [
        {
            "product_name": item.productName,
            "description": item.description,
            "quantity": item.quantity,
            "unit_price": item.unitPrice,
            "discount": item.discount,
            "unit": "pcs",
            "vat_rate": params.vatRate,
            "total": round(line_total(item), 2),
        }
        for item in params.items
    ]
    await invoice_queries.insert_invoice(
        ctx.tenant_id,
        {
            "id": invoice_id,
            "invoice_number": invoice_number,
            "company_id": str(customer["id"]),
            "due_date": due_date,
            "subtotal": totals["subtotal"],
            "vat_rate": params.vatRate,
            "tax": totals["tax"],
            "total": totals["total"],
            "currency": currency,
            "notes": params.notes,
            "created_by": creator_id,
        },
        items,
    )

    def money(value: float) -> str:
        return format_money(value, currency, ctx.locale)

    summary = markdown_table(
        ["Field", "Value"],
        [
            ("Invoice Number", invoice_number),
            ("Customer", customer["name"]),
            ("Status", "Draft"),
            ("Due Date", format_date(due_date, ctx.locale)),
            ("Subtotal", money(totals["subtotal"])),
            (f"VAT ({params.vatRate:g}%)", money(totals["tax"])),
            ("**Total**", f"**{money(totals['total'])}**"),
        ],
    )
    lines = markdown_table(
        ["Item", "Qty", "Unit Price", "Total"],
        [(i["product_name"], f"{i['quantity']:g}", money(i["unit_price"]), money(i["total"])) for i in items],
    )
    text = (
        f"✅ **Invoice Created Successfully**\n\n{summary}\n\n### Items\n{lines}\n\n"
        "📝 The invoice has been created as a **draft**. You can review and send it from the invoices page."
    )
    return ToolResult(text=text, link=dashboard_link(f"sales/invoices/{invoice_id}", "Open invoice"))


TOOLS = [
    ToolDefinition(
        name="getInvoices",
        description="Retrieve and filter invoices with pagination and status filtering",
        group=ToolGroup.INVOICES,
        parameters_model=GetInvoicesParams,
        executor=get_invoices,
        failure_message="Failed to retrieve invoices",
    ),
    ToolDefinition(
        name="getOverdueInvoices",
        description="Get all overdue invoices that need attention",
        group=ToolGroup.INVOICES,
        parameters_model=EmptyParams,
        executor=get_overdue_invoices,
        failure_message="Failed to retrieve overdue invoices",
    ),
    ToolDefinition(
        name="createInvoice",
        description=(
            "Create a new draft invoice for a customer. Requires either customerName or customerId "
            "and at least one line item."
        ),
        group=ToolGroup.INVOICES,
        parameters_model=CreateInvoiceParams,
        executor=create_invoice,
        writes=True,
        failure_message="Failed to create invoice",
    ),
]
