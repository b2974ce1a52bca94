from datetime import datetime

from pydantic import BaseModel, Field, model_validator


# --- Marketplace ---

class Listing(BaseModel):
    """A marketplace listing as returned by search or item lookup."""

    item_id: str
    title: str = ""
    price: float
    currency: str = "USD"
    url: str = ""
    image_url: str = ""
    condition: str = ""
    seller: str = ""
    buying_options: list[str] = Field(default_factory=list)


class SearchPage(BaseModel):
    listings: list[Listing] = Field(default_factory=list)
    total: int = 0
    offset: int = 0
    limit: int = 0

    @property
    def has_more(self) -> bool:
        return self.offset + self.limit < self.total


# --- TrackedQuery ---

class QueryCreate(BaseModel):
    owner_id: int
    name: str
    keywords: str
    min_price: float | None = Field(None, ge=0)
    max_price: float | None = Field(None, ge=0)
    condition: str | None = None
    buying_format: str | None = None
    free_shipping: bool = False
    marketplace_id: str = "EBAY_US"

    @model_validator(mode="after")
    def _check_bounds(self):
        if self.min_price is not None and self.max_price is not None and self.min_price > self.max_price:
            raise ValueError("min_price must not exceed max_price")
        return self


class QueryUpdate(BaseModel):
    keywords: str | None = None
    min_price: float | None = Field(None, ge=0)
    max_price: float | None = Field(None, ge=0)
    condition: str | None = None
    buying_format: str | None = None
    free_shipping: bool | None = None
    is_active: bool | None = None


class QueryResponse(BaseModel):
    id: int
    owner_id: int
    name: str
    keywords: str
    min_price: float | None
    max_price: float | None
    condition: str | None
    buying_format: str | None
    free_shipping: bool
    marketplace_id: str
    is_active: bool
    last_run_at: datetime | None
    created_at: datetime

    model_config = {"from_attributes": True}


class QueryListResponse(BaseModel):
    queries: list[QueryResponse]
    total: int


# --- TrackedItem / PriceSample ---

class ItemResponse(BaseModel):
    id: int
    owner_id: int
    query_id: int | None
    remote_item_id: str
    title: str
    url: str
    currency: str
    current_price: float | None
    target_price: float | None
    lowest_price: float | None
    highest_price: float | None
    is_active: bool
    last_checked_at: datetime | None
    created_at: datetime

    model_config = {"from_attributes": True}


class ItemListResponse(BaseModel):
    items: list[ItemResponse]
    total: int


class PriceSampleResponse(BaseModel):
    id: int
    item_id: int
    price: float
    currency: str
    price_dropped: bool
    drop_amount: float | None
    recorded_at: datetime

    model_config = {"from_attributes": True}


class TargetPriceUpdate(BaseModel):
    target_price: float | None = Field(None, ge=0)  # null clears the target


# --- Price monitor ---

class PriceCheckRequest(BaseModel):
    item_ids: list[int] = Field(min_length=1)


class PriceCheckResponse(BaseModel):
    owner_id: int | None = None
    items_checked: int
    prices_updated: int
    price_drops_detected: int
    alerts_triggered: int
    conversion_errors: int
    api_errors: int
    duration_ms: int


class PriceSummaryResponse(BaseModel):
    owner_id: int
    total_items: int
    active_items: int
    items_below_target: int
    average_price: float
    lowest_price: float
    highest_price: float
    price_drops: int
    total_savings: float


# --- Notification preferences ---

class ChannelConfig(BaseModel):
    type: str  # log / discord / slack / webhook / email / sms / push
    enabled: bool = True
    config: dict = Field(default_factory=dict)


class PreferenceUpdate(BaseModel):
    drop_threshold_pct: float = Field(5.0, ge=0, le=100)
    quiet_hours_enabled: bool = False
    quiet_start_hour: int = Field(22, ge=0, le=23)
    quiet_end_hour: int = Field(8, ge=0, le=23)
    timezone: str = "UTC"
    channels: list[ChannelConfig] = Field(default_factory=list)


class PreferenceResponse(PreferenceUpdate):
    owner_id: int


# --- Workers / scheduler ---

class ScheduleUpdate(BaseModel):
    interval_seconds: int


class TriggerResponse(BaseModel):
    triggered: bool
    message: str


class WorkerStatusResponse(BaseModel):
    running: bool
    enabled: bool
    interval_seconds: int
    last_run_at: datetime | None = None
    last_duration_ms: int = 0
    next_run_at: datetime | None = None
    last_stats: dict | None = None
    last_error: str | None = None


# --- System ---

class ServiceStatus(BaseModel):
    name: str
    status: str  # ok / degraded / unavailable
    detail: str = ""


class HealthResponse(BaseModel):
    status: str
    scheduler_running: bool
    active_queries: int
    active_items: int
    services: list[ServiceStatus] = []


# --- Owners ---

class OwnerCreate(BaseModel):
    name: str
    email: str | None = None


class OwnerResponse(BaseModel):
    id: int
    name: str
    email: str | None
    linked: bool = False
    needs_reauth: bool
    created_at: datetime

    model_config = {"from_attributes": True}


class CredentialLink(BaseModel):
    code: str  # authorization code from the OAuth redirect
