"""Customer tools."""

from typing import Optional

from pydantic import BaseModel, Field

from crm_assistant.data import customers as customer_queries
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


class GetCustomersParams(BaseModel):
    pageSize: int = Field(10, ge=1, le=50, description="Number of customers to return")
    search: Optional[str] = Field(None, description="Search by name, industry, city or country")
    industry: Optional[str] = Field(None, description="Filter by industry")
    country: Optional[str] = Field(None, description="Filter by country")


class GetCustomerByIdParams(BaseModel):
    customerId: str = Field(..., min_length=1, description="The customer ID")


class CreateCustomerParams(BaseModel):
    name: str = Field(..., min_length=1, max_length=255, description="Customer/company name")
    email: Optional[str] = Field(None, description="Contact email")
    phone: Optional[str] = Field(None, description="Contact phone")
    website: Optional[str] = Field(None, description="Company website")
    industry: Optional[str] = Field(None, description="Industry")
    country: Optional[str] = Field(None, description="Country")
    city: Optional[str] = Field(None, description="City")
    address: Optional[str] = Field(None, description="Street address")


async def get_customers(ctx: ExecutionContext, params: GetCustomersParams) -> ToolResult:
    rows = await customer_queries.list_customers(
        ctx.tenant_id,
        page_size=params.pageSize,
        search=params.search,
        industry=params.industry,
        country=params.country,
    )
    if not rows:
        return ToolResult(text="No customers found matching your criteria.")

    table = markdown_table(
        ["Name", "Industry", "Location", "Email"],
        [
            (
                row["name"],
                row.get("industry") or "-",
                ", ".join(part for part in (row.get("city"), row.get("country")) if part) or "-",
                row.get("email") or "-",
            )
            for row in rows
        ],
    )
    return ToolResult(
        text=f"{table}\n\nShowing {len(rows)} customers.",
        link=dashboard_link("crm/companies", "View all customers"),
    )


async def get_customer_by_id(ctx: ExecutionContext, params: GetCustomerByIdParams) -> ToolResult:
    customer = await customer_queries.get_customer(ctx.tenant_id, params.customerId)
    if not customer:
        return ToolResult(text=f"Customer with ID {params.customerId} not found.")

    table = markdown_table(
        ["Field", "Value"],
        [
            ("Name", customer["name"]),
            ("Industry", customer.get("industry")),
            ("Country", customer.get("country")),
            ("City", customer.get("city")),
            ("Address", customer.get("address")),
            ("Email", customer.get("email")),
            ("Phone", customer.get("phone")),
            ("Website", customer.get("website")),
            ("Invoices", int(to_float(customer.get("invoice_count")))),
            ("Total Invoiced", format_money(customer.get("invoiced_total"), ctx.base_currency, ctx.locale)),
            ("Customer Since", format_date(customer.get("created_at"), ctx.locale)),
        ],
    )
    return ToolResult(
        text=f"## {customer['name']}\n\n{table}",
        link=dashboard_link(f"crm/companies/{customer['id']}", "Open customer"),
    )


async def get_industries_summary(ctx: ExecutionContext, params: EmptyParams) -> ToolResult:
    rows = await customer_queries.industries_summary(ctx.tenant_id)
    if not rows:
        return ToolResult(text="No customers found.")

    total = sum(int(to_float(row["customer_count"])) for row in rows)
    table = markdown_table(
        ["Industry", "Customers", "Share"],
        [
            (
                row["industry"],
                int(to_float(row["customer_count"])),
                f"{to_float(row['customer_count']) / total * 100:.1f}%" if total else "0%",
            )
            for row in rows
        ],
    )
    return ToolResult(text=f"## Customers by Industry\n\n{table}\n\n**Total**: {total} customers")


async def create_customer(ctx: ExecutionContext, params: CreateCustomerParams) -> ToolResult:
    matches = await customer_queries.find_customers_by_name(ctx.tenant_id, params.name)
    if len(matches) == 1:
        existing = matches[0]
        return ToolResult(
            text=f'⚠️ A customer named "{existing["name"]}" already exists (ID: {existing["id"]}). No new customer was created.',
            link=dashboard_link(f"crm/companies/{existing['id']}", "Open customer"),
        )
    if len(matches) > 1:
        listing = "\n".join(f"- {m['name']} (ID: {m['id']})" for m in matches)
        return ToolResult(
            text=(
                f'⚠️ Multiple customers found matching "{params.name}":\n{listing}\n\n'
                "Please confirm this is a new customer with a more specific name."
            )
        )

    creator_id = await user_queries.find_acting_user(ctx.tenant_id)
    if not creator_id:
        return ToolResult(text="❌ No users found for this tenant. Cannot create customer.")

    created = await customer_queries.insert_customer(
        ctx.tenant_id,
        {
            "name": params.name,
            "email": params.email,
            "phone": params.phone,
            "website": params.website,
            "industry": params.industry,
            "country": params.country,
            "city": params.city,
            "address": params.address,
            "created_by": creator_id,
        },
    )
    details = markdown_table(
        ["Field", "Value"],
        [
            ("Name", created["name"]),
            ("Email", params.email),
            ("Industry", params.industry),
            ("Location", ", ".join(p for p in (params.city, params.country) if p) or None),
        ],
    )
    return ToolResult(
        text=f"✅ **Customer Created Successfully**\n\n{details}",
        link=dashboard_link(f"crm/companies/{created['id']}", "Open customer"),
    )


TOOLS = [
    ToolDefinition(
        name="getCustomers",
        description="Search and list customers (companies) with optional industry and country filters",
        group=ToolGroup.CUSTOMERS,
        parameters_model=GetCustomersParams,
        executor=get_customers,
        failure_message="Failed to retrieve customers",
    ),
    ToolDefinition(
        name="getCustomerById",
        description="Get detailed information about one customer, including invoicing totals",
        group=ToolGroup.CUSTOMERS,
        parameters_model=GetCustomerByIdParams,
        executor=get_customer_by_id,
        failure_message="Failed to retrieve customer",
    ),
    ToolDefinition(
        name="getIndustriesSummary",
        description="Summarize customers by industry",
        group=ToolGroup.CUSTOMERS,
        parameters_model=EmptyParams,
        executor=get_industries_summary,
        failure_message="Failed to summarize industries",
    ),
    ToolDefinition(
        name="createCustomer",
        description="Create a new customer (company). Checks for existing customers with the same name first.",
        group=ToolGroup.CUSTOMERS,
        parameters_model=CreateCustomerParams,
        executor=create_customer,
        writes=True,
        failure_message="Failed to create customer",
    ),
]
