"""WooCommerce catalog tools.

Each tool calls the store's REST API through an :class:`UpstreamClient` and
projects the response down to a short allow-list of fields, so the text
handed back to the model stays small.
"""
import json
from typing import Any, Dict, Iterable, List, Optional
from urllib.parse import urlencode

from pydantic import BaseModel, ConfigDict, Field

from .client import UpstreamClient
from .tools import ToolRegistry, ToolResult

CATEGORY_FIELDS = ("id", "name", "slug", "count")
SEARCH_FIELDS = ("id", "name", "price", "permalink", "status", "stock_status", "date_modified")
PRODUCT_FIELDS = ("id", "name", "permalink", "description", "short_description", "price", "stock_status")
UPDATED_FIELDS = ("id", "name", "permalink", "short_description", "description", "date_modified")

DESCRIPTION_LIMIT = 200
ELLIPSIS = "…"


class ListCategoriesInput(BaseModel):
    model_config = ConfigDict(extra="ignore")

    per_page: int = Field(50, ge=1, le=100, description="Categories per page")
    page: int = Field(1, ge=1, description="Page number")


class SearchProductsInput(BaseModel):
    model_config = ConfigDict(extra="ignore")

    q: str = Field(..., description="Search text")
    per_page: int = Field(10, ge=1, le=100, description="Products per page")
    page: int = Field(1, ge=1, description="Page number")


class GetProductInput(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int = Field(..., ge=1, description="Product ID")


class MetaDataItem(BaseModel):
    key: str
    value: Any


class UpdateProductInput(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int = Field(..., ge=1, description="Product ID")
    name: Optional[str] = None
    slug: Optional[str] = None
    description: Optional[str] = None
    short_description: Optional[str] = None
    meta_data: Optional[List[MetaDataItem]] = Field(
        None,
        description="Meta entries to set, as key/value pairs"
    )

    def changes(self) -> Dict[str, Any]:
        """The fields the caller actually provided, minus the product ID."""
        return self.model_dump(exclude={"id"}, exclude_none=True)


def project(item: Dict[str, Any], fields: Iterable[str]) -> Dict[str, Any]:
    """Keep only ``fields`` from one upstream object."""
    return {name: item.get(name) for name in fields}


def truncate(text: Optional[str], limit: int = DESCRIPTION_LIMIT) -> Optional[str]:
    if text and len(text) > limit:
        return text[:limit] + ELLIPSIS
    return text


def as_text(value: Any) -> ToolResult:
    return ToolResult.text(json.dumps(value, indent=2, ensure_ascii=False))


class WooCommerceTools:
    """Tool handlers bound to one store client."""

    def __init__(self, client: UpstreamClient):
        self.client = client

    async def list_categories(self, params: ListCategoriesInput) -> ToolResult:
        query = urlencode({"per_page": params.per_page, "page": params.page})
        data = await self.client.request("GET", f"/products/categories?{query}")
        categories = [project(c, CATEGORY_FIELDS) for c in (data or [])]
        return as_text(categories[:params.per_page])

    async def search_products(self, params: SearchProductsInput) -> ToolResult:
        query = urlencode({"search": params.q, "per_page": params.per_page, "page": params.page})
        data = await self.client.request("GET", f"/products?{query}")
        products = [project(p, SEARCH_FIELDS) for p in (data or [])]
        return as_text(products[:params.per_page])

    async def get_product(self, params: GetProductInput) -> ToolResult:
        data = await self.client.request("GET", f"/products/{params.id}")
        return as_text(project(data or {}, PRODUCT_FIELDS))

    async def update_product(self, params: UpdateProductInput) -> ToolResult:
        data = await self.client.request("PUT", f"/products/{params.id}", params.changes())
        product = project(data or {}, UPDATED_FIELDS)
        product["description"] = truncate(product["description"])
        return as_text(product)

    def register(self, registry: ToolRegistry) -> None:
        registry.register(
            "list_categories",
            "List WooCommerce product categories (id, name, slug, count)",
            ListCategoriesInput,
            self.list_categories
        )
        registry.register(
            "wc_search_products",
            "Search WooCommerce products by text",
            SearchProductsInput,
            self.search_products
        )
        registry.register(
            "wc_get_product",
            "Get one WooCommerce product by ID",
            GetProductInput,
            self.get_product
        )
        registry.register(
            "wc_update_product",
            "Update a WooCommerce product's name, slug, descriptions or meta data",
            UpdateProductInput,
            self.update_product
        )
