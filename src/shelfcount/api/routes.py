"""API route definitions."""

from __future__ import annotations

from typing import TYPE_CHECKING, Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, UploadFile, status

from shelfcount.api.middleware import verify_api_key
from shelfcount.api.schemas import (
    ConfirmRequest,
    ConfirmResponse,
    CreateItemRequest,
    CreateSessionRequest,
    DetectionBoxModel,
    DetectionErrorModel,
    ErrorResponse,
    HealthResponse,
    InventoryItemModel,
    ItemsResponse,
    ManualCountRequest,
    OverlayRect,
    OverlaysResponse,
    ReferenceSizeModel,
    SessionView,
)
from shelfcount.ledger import ItemReconciler
from shelfcount.vision.device import DeviceError, UploadedFrameDevice
from shelfcount.vision.preprocessing import UploadRejected, validate_upload
from shelfcount.vision.projection import project_all
from shelfcount.vision.session import SessionStateError
from shelfcount.vision.types import DetectionResult, LabelMismatch, SessionStatus, SurfaceSize

if TYPE_CHECKING:
    from shelfcount.config import Settings
    from shelfcount.ledger import InventoryItem, InventoryLedger
    from shelfcount.vision.pool import ModelCallPool
    from shelfcount.vision.registry import SessionRegistry
    from shelfcount.vision.session import CaptureSession
    from shelfcount.vision.types import DetectionBox

router = APIRouter(prefix="/api/v1", dependencies=[Depends(verify_api_key)])

_NOT_FOUND = {status.HTTP_404_NOT_FOUND: {"model": ErrorResponse}}
_CONFLICT = {status.HTTP_409_CONFLICT: {"model": ErrorResponse}}
# Starlette renamed its 413 constant between releases.
_CONTENT_TOO_LARGE = 413


def _get_settings(request: Request) -> Settings:
    settings: Settings = request.app.state.settings
    return settings


def _get_registry(request: Request) -> SessionRegistry:
    registry: SessionRegistry = request.app.state.registry
    return registry


def _get_ledger(request: Request) -> InventoryLedger:
    ledger: InventoryLedger = request.app.state.ledger
    return ledger


def _get_pool(request: Request) -> ModelCallPool:
    pool: ModelCallPool = request.app.state.pool
    return pool


def _lookup_session(request: Request, session_id: str) -> CaptureSession:
    try:
        return _get_registry(request).get(session_id)
    except KeyError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Unknown session: {session_id}") from exc


def _lookup_item(request: Request, item_id: str) -> InventoryItem:
    try:
        return _get_ledger(request).get(item_id)
    except KeyError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Unknown item: {item_id}") from exc


def _conflict(exc: Exception) -> HTTPException:
    return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))


def _box_model(box: DetectionBox) -> DetectionBoxModel:
    return DetectionBoxModel(x1=box.x1, y1=box.y1, x2=box.x2, y2=box.y2, space=box.space.value)


def _item_model(item: InventoryItem) -> InventoryItemModel:
    return InventoryItemModel(
        id=item.id,
        product_name=item.product_name,
        sku=item.sku,
        count=item.count,
        is_counted=item.is_counted,
        detected_boxes=item.detected_boxes,
    )


def _item_id_of(session: CaptureSession) -> str | None:
    reconciler = session.reconciler
    return reconciler.item_id if isinstance(reconciler, ItemReconciler) else None


def _session_view(session: CaptureSession) -> SessionView:
    image = session.image
    view = SessionView(
        id=session.session_id,
        status=session.status.value,
        expected_label=session.expected_label,
        item_id=_item_id_of(session),
        image_width=image.width if image else None,
        image_height=image.height if image else None,
        manual_count=session.manual_override_count,
    )

    outcome = session.outcome
    if isinstance(outcome, DetectionResult):
        view.count = outcome.count
        view.boxes = [_box_model(box) for box in outcome.boxes]
        if outcome.reference_size is not None:
            view.reference_size = ReferenceSizeModel(
                width=outcome.reference_size.width,
                height=outcome.reference_size.height,
            )
    elif outcome is not None:
        view.error = DetectionErrorModel(
            kind=outcome.kind,
            message=outcome.message,
            observed_label=outcome.observed_label if isinstance(outcome, LabelMismatch) else None,
        )
    return view


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
)
async def health(request: Request) -> HealthResponse:
    """Return service health status."""
    settings = _get_settings(request)
    pool = _get_pool(request)
    return HealthResponse(
        status="ok",
        model=settings.gemini_model,
        reply_format=settings.reply_format,
        concurrent_requests=pool.active_count,
        queue_depth=pool.queue_depth,
        open_sessions=_get_registry(request).open_count(),
    )


# ---------------------------------------------------------------------------
# Inventory ledger
# ---------------------------------------------------------------------------


@router.post(
    "/items",
    response_model=InventoryItemModel,
    status_code=status.HTTP_201_CREATED,
    summary="Register an inventory item",
)
async def create_item(body: CreateItemRequest, request: Request) -> InventoryItemModel:
    item = _get_ledger(request).add_item(body.product_name, body.sku)
    return _item_model(item)


@router.get(
    "/items",
    response_model=ItemsResponse,
    summary="List inventory items with counting progress",
)
async def list_items(request: Request) -> ItemsResponse:
    ledger = _get_ledger(request)
    summary = ledger.summary()
    return ItemsResponse(
        items=[_item_model(item) for item in ledger.items()],
        total_items=summary.total_items,
        counted_items=summary.counted_items,
        progress=summary.progress,
    )


# ---------------------------------------------------------------------------
# Capture sessions
# ---------------------------------------------------------------------------


@router.post(
    "/sessions",
    response_model=SessionView,
    status_code=status.HTTP_201_CREATED,
    responses=_NOT_FOUND,
    summary="Open a capture session for an item",
)
async def create_session(body: CreateSessionRequest, request: Request) -> SessionView:
    """Open a live session counting the item's product."""
    item = _lookup_item(request, body.item_id)
    reconciler = _get_ledger(request).reconciler_for(item.id)
    session = _get_registry(request).create(item.product_name.lower(), reconciler)
    return _session_view(session)


@router.get(
    "/sessions/{session_id}",
    response_model=SessionView,
    responses=_NOT_FOUND,
    summary="Get a capture session",
)
async def get_session(session_id: str, request: Request) -> SessionView:
    return _session_view(_lookup_session(request, session_id))


@router.post(
    "/sessions/{session_id}/capture",
    response_model=SessionView,
    responses={
        **_NOT_FOUND,
        **_CONFLICT,
        _CONTENT_TOO_LARGE: {"model": ErrorResponse},
    },
    summary="Capture a frame and count objects in it",
)
async def capture(session_id: str, file: UploadFile, request: Request) -> SessionView:
    """Feed an uploaded frame to the session and run one detection.

    Ignored unless the session is live; the current view is returned either way.
    """
    session = _lookup_session(request, session_id)
    data = await file.read()
    try:
        validate_upload(data, _get_settings(request))
    except UploadRejected as exc:
        raise HTTPException(status_code=_CONTENT_TOO_LARGE, detail=str(exc)) from exc

    device = session.device
    if session.status is SessionStatus.LIVE and isinstance(device, UploadedFrameDevice):
        device.feed(data)
    try:
        await session.capture()
    except DeviceError as exc:
        raise _conflict(exc) from exc
    return _session_view(session)


@router.put(
    "/sessions/{session_id}/manual-count",
    response_model=SessionView,
    responses={**_NOT_FOUND, **_CONFLICT},
    summary="Set or clear the operator's manual count",
)
async def set_manual_count(session_id: str, body: ManualCountRequest, request: Request) -> SessionView:
    session = _lookup_session(request, session_id)
    try:
        session.set_manual_count(body.manual_count)
    except SessionStateError as exc:
        raise _conflict(exc) from exc
    return _session_view(session)


@router.post(
    "/sessions/{session_id}/retake",
    response_model=SessionView,
    responses={**_NOT_FOUND, **_CONFLICT},
    summary="Discard the captured frame and go live again",
)
async def retake(session_id: str, request: Request) -> SessionView:
    session = _lookup_session(request, session_id)
    try:
        session.retake()
    except SessionStateError as exc:
        raise _conflict(exc) from exc
    return _session_view(session)


@router.post(
    "/sessions/{session_id}/confirm",
    response_model=ConfirmResponse,
    responses={**_NOT_FOUND, **_CONFLICT},
    summary="Confirm the count and update the ledger",
)
async def confirm(session_id: str, body: ConfirmRequest, request: Request) -> ConfirmResponse:
    """Confirm the session, reporting the manual count if given, else the model's count."""
    session = _lookup_session(request, session_id)
    item_id = _item_id_of(session)
    if item_id is None:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Session is not bound to an item")
    try:
        report = session.confirm(body.manual_count)
    except SessionStateError as exc:
        raise _conflict(exc) from exc
    _get_registry(request).release_if_closed(session_id)

    return ConfirmResponse(
        final_count=report.final_count,
        boxes=[_box_model(box) for box in report.boxes],
        item=_item_model(_lookup_item(request, item_id)),
    )


@router.delete(
    "/sessions/{session_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    responses=_NOT_FOUND,
    summary="Cancel and discard a capture session",
)
async def cancel(session_id: str, request: Request) -> Response:
    try:
        _get_registry(request).close(session_id)
    except KeyError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Unknown session: {session_id}") from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get(
    "/sessions/{session_id}/overlays",
    response_model=OverlaysResponse,
    responses=_NOT_FOUND,
    summary="Project detection boxes onto a rendered image surface",
)
async def overlays(
    session_id: str,
    request: Request,
    width: Annotated[float, Query(gt=0, description="Rendered image width in pixels")],
    height: Annotated[float, Query(gt=0, description="Rendered image height in pixels")],
) -> OverlaysResponse:
    """Return one pixel rectangle per detected box; empty unless the session resolved without error."""
    session = _lookup_session(request, session_id)
    outcome = session.outcome
    rects: list[OverlayRect] = []
    if isinstance(outcome, DetectionResult):
        surface = SurfaceSize(width=width, height=height)
        rects = [
            OverlayRect(left=r.left, top=r.top, width=r.width, height=r.height) for r in project_all(outcome, surface)
        ]
    return OverlaysResponse(rendered_width=width, rendered_height=height, rects=rects)
