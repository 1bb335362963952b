"""Pydantic request/response schemas for the ShelfCount API."""

from __future__ import annotations

from pydantic import BaseModel, Field


class DetectionBoxModel(BaseModel):
    """One detected object, in the coordinate space the model used."""

    x1: float
    y1: float
    x2: float
    y2: float
    space: str = Field(description="'normalized' (0.0-1.0) or 'absolute_pixels'")


class ReferenceSizeModel(BaseModel):
    width: float
    height: float


class DetectionErrorModel(BaseModel):
    """A failed detection. Raw model text is never included."""

    kind: str = Field(description="'label_mismatch', 'unparseable_response', or 'transport_failure'")
    message: str
    observed_label: str | None = None


class SessionView(BaseModel):
    """Current state of a capture session."""

    id: str
    status: str = Field(description="'live', 'captured', 'processing', 'resolved', or 'closed'")
    expected_label: str
    item_id: str | None = None
    image_width: int | None = None
    image_height: int | None = None
    count: int | None = Field(default=None, description="Model count, when resolved without error")
    boxes: list[DetectionBoxModel] = Field(default_factory=list)
    reference_size: ReferenceSizeModel | None = None
    manual_count: int | None = None
    error: DetectionErrorModel | None = None


class CreateSessionRequest(BaseModel):
    item_id: str


class ManualCountRequest(BaseModel):
    manual_count: int | None = Field(default=None, ge=0)


class ConfirmRequest(BaseModel):
    manual_count: int | None = Field(default=None, ge=0)


class OverlayRect(BaseModel):
    """A pixel rectangle on the rendered image surface."""

    left: int
    top: int
    width: int
    height: int


class OverlaysResponse(BaseModel):
    rendered_width: float
    rendered_height: float
    rects: list[OverlayRect]


class CreateItemRequest(BaseModel):
    product_name: str = Field(min_length=1)
    sku: str = Field(min_length=1)


class InventoryItemModel(BaseModel):
    id: str
    product_name: str
    sku: str
    count: int
    is_counted: bool
    detected_boxes: int


class ItemsResponse(BaseModel):
    items: list[InventoryItemModel]
    total_items: int
    counted_items: int
    progress: float = Field(description="Percentage of items counted")


class ConfirmResponse(BaseModel):
    final_count: int
    boxes: list[DetectionBoxModel]
    item: InventoryItemModel


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    model: str
    reply_format: str
    concurrent_requests: int
    queue_depth: int
    open_sessions: int


class ErrorResponse(BaseModel):
    """Standard error response."""

    detail: str
