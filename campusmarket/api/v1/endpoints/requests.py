"""
Endpoints for buyer requests.
"""
import logging
from datetime import datetime
from fastapi import APIRouter, BackgroundTasks, Depends, File, Form, Query, UploadFile, status
from sqlalchemy.orm import Session
from uuid import UUID
from typing import Optional, List

from campusmarket.core.deps import get_db, get_current_active_user
from campusmarket.core.exceptions import (
    BadRequestException,
    ExternalServiceException,
    ForbiddenException,
    NotFoundException,
)
from campusmarket.crud.offer import offer as crud_offer
from campusmarket.crud.request import request as crud_request
from campusmarket.models.request import Request, MAX_REQUEST_IMAGES
from campusmarket.models.user import User
from campusmarket.schemas.common import Envelope, PaginatedEnvelope, paginate, envelope
from campusmarket.schemas.order import AcceptOfferResponse
from campusmarket.schemas.request import (
    RequestCreate,
    RequestUpdate,
    RequestFulfill,
    RequestExtend,
    RequestResponse,
    RequestDetailResponse,
    RequestHistoryResponse,
    RequestAnalyticsResponse,
    RequestStatus,
)
from campusmarket.services import acceptance_service
from campusmarket.services.notification_service import notify_sellers_of_new_request
from campusmarket.services.storage_service import storage_service, StorageFolder

logger = logging.getLogger(__name__)

router = APIRouter()


def _get_request_or_404(db: Session, request_id: UUID) -> Request:
    request_obj = crud_request.get(db, id=request_id)
    if not request_obj:
        raise NotFoundException("Request not found")
    return request_obj


def _ensure_can_manage(request_obj: Request, user: User) -> None:
    """Requester, admin or moderator."""
    if request_obj.requester_id != user.id and not user.is_admin():
        raise ForbiddenException("You do not have permission to modify this request")


def _resolve_campus(user: User, campus_id: Optional[int], all_campuses: bool) -> Optional[int]:
    """An explicit campus wins; otherwise the caller's campus unless all_campuses."""
    if campus_id is not None:
        return campus_id
    if all_campuses:
        return None
    return user.campus_id


@router.post("", response_model=Envelope[RequestResponse], status_code=status.HTTP_201_CREATED)
def create_request(
    request_in: RequestCreate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """
    Create a request.

    The caller becomes the requester. At most REQUEST_DAILY_LIMIT requests
    can be created per rolling 24 hours. Sellers on the campus are notified
    after the response is sent.
    """
    request_obj = crud_request.create_request(db, obj_in=request_in, requester=current_user)
    background_tasks.add_task(notify_sellers_of_new_request, request_obj.id)
    return envelope(request_obj)


@router.get("", response_model=PaginatedEnvelope[RequestResponse])
def get_requests(
    campus_id: Optional[int] = None,
    all_campuses: bool = False,
    category_id: Optional[int] = None,
    requester_id: Optional[UUID] = None,
    status: Optional[str] = None,
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """
    List requests, newest first.

    Scoped to the caller's campus unless all_campuses=true or campus_id is
    given.
    """
    rows, total = crud_request.list_requests(
        db,
        campus_id=_resolve_campus(current_user, campus_id, all_campuses),
        category_id=category_id,
        requester_id=requester_id,
        status=status,
        search=search,
        page=page,
        limit=limit,
    )
    return paginate(rows, total, page, limit)


@router.get("/search/advanced", response_model=PaginatedEnvelope[RequestResponse])
def advanced_search_requests(
    search: Optional[str] = None,
    status: List[RequestStatus] = Query([RequestStatus.open]),
    category_id: Optional[int] = None,
    campus_id: Optional[int] = None,
    requester_id: Optional[UUID] = None,
    min_price: Optional[float] = None,
    max_price: Optional[float] = None,
    min_views: Optional[int] = None,
    max_views: Optional[int] = None,
    min_offers: Optional[int] = None,
    max_offers: Optional[int] = None,
    min_response_time: Optional[float] = None,
    max_response_time: Optional[float] = None,
    priority: Optional[List[str]] = Query(None),
    has_images: Optional[bool] = None,
    tags: Optional[List[str]] = Query(None),
    expiring_in: Optional[int] = Query(None, description="Hours"),
    fulfilled: Optional[bool] = None,
    popularity: Optional[str] = Query(None, pattern="^(high|medium)$"),
    sort_by: str = "newest",
    order: str = Query("desc", pattern="^(asc|desc)$"),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """
    Multi-criteria request search.

    sort_by: newest, oldest, priceAsc, priceDesc, views, offers, priority,
    responseTime, expiringsoon, fulfillmentRate, trending, mostOffers,
    leastOffers.
    """
    rows, total = crud_request.advanced_search(
        db,
        search=search,
        statuses=[s.value for s in status],
        category_id=category_id,
        campus_id=campus_id,
        requester_id=requester_id,
        min_price=min_price,
        max_price=max_price,
        min_views=min_views,
        max_views=max_views,
        min_offers=min_offers,
        max_offers=max_offers,
        min_response_time=min_response_time,
        max_response_time=max_response_time,
        priorities=priority,
        has_images=has_images,
        tags=tags,
        expiring_in=expiring_in,
        fulfilled=fulfilled,
        popularity=popularity,
        sort_by=sort_by,
        order=order,
        page=page,
        limit=limit,
    )
    return paginate(rows, total, page, limit)


@router.get("/analytics", response_model=Envelope[RequestAnalyticsResponse])
def get_request_analytics(
    period: str = Query("30d", pattern="^(7d|30d|90d|1y|all)$"),
    campus_id: Optional[int] = None,
    category_id: Optional[int] = None,
    requester_id: Optional[UUID] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """
    Request statistics over a period.

    Staff see any scope; everyone else only their own requests.
    """
    if not current_user.is_admin():
        requester_id = current_user.id

    stats = crud_request.get_analytics(
        db,
        period=period,
        campus_id=campus_id,
        category_id=category_id,
        requester_id=requester_id,
    )
    return envelope(stats)


@router.get("/mine", response_model=PaginatedEnvelope[RequestResponse])
def get_my_requests(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """The caller's own requests, newest first."""
    rows, total = crud_request.get_by_requester(db, requester_id=current_user.id, page=page, limit=limit)
    return paginate(rows, total, page, limit)


@router.get("/{request_id}", response_model=Envelope[RequestDetailResponse])
def get_request(
    request_id: UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """
    Request detail with its offers.

    Every read counts as a view.
    """
    request_obj = _get_request_or_404(db, request_id)
    crud_request.increment_views(db, request_id=request_id)
    db.refresh(request_obj)

    offers = crud_offer.get_by_request(db, request_id=request_id)
    return envelope({"request": request_obj, "offers": offers})


@router.patch("/{request_id}", response_model=Envelope[RequestResponse])
def update_request(
    request_id: UUID,
    request_in: RequestUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """
    Edit an open request.

    Only the requester or staff. Fulfilled and closed requests are frozen.
    """
    request_obj = _get_request_or_404(db, request_id)
    _ensure_can_manage(request_obj, current_user)

    request_obj = crud_request.update_request(db, db_obj=request_obj, obj_in=request_in, user_id=current_user.id)
    return envelope(request_obj, message="Request updated successfully")


@router.delete("/{request_id}", response_model=Envelope[RequestResponse])
def delete_request(
    request_id: UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """
    Close a request and cancel its pending offers.

    The row is kept for its history.
    """
    request_obj = _get_request_or_404(db, request_id)
    _ensure_can_manage(request_obj, current_user)

    request_obj = crud_request.close_request(db, db_obj=request_obj, user_id=current_user.id)
    return envelope(request_obj, message="Request deleted successfully")


@router.post("/{request_id}/fulfill", response_model=Envelope[AcceptOfferResponse])
def fulfill_request(
    request_id: UUID,
    fulfill_in: RequestFulfill,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """
    Mark a request fulfilled by accepting the winning offer.

    Same effect as accepting the offer: the other pending offers are
    rejected and an order is created.
    """
    request_obj = _get_request_or_404(db, request_id)
    if request_obj.requester_id != current_user.id:
        raise ForbiddenException("Only the requester can mark this request as fulfilled")

    winning = crud_offer.get(db, id=fulfill_in.offer_id)
    if not winning or winning.request_id != request_obj.id:
        raise BadRequestException("Offer does not belong to this request")

    offer, order = acceptance_service.accept_offer(db, offer_id=winning.id, user=current_user)
    return envelope({"offer": offer, "order": order}, message="Request marked as fulfilled")


@router.post("/{request_id}/extend", response_model=Envelope[RequestResponse])
def extend_request(
    request_id: UUID,
    extend_in: RequestExtend,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """
    Push the expiry forward.

    extend_by_days (default 7, capped at 365) or an explicit extend_to.
    """
    request_obj = _get_request_or_404(db, request_id)
    _ensure_can_manage(request_obj, current_user)

    request_obj = crud_request.extend_expiration(
        db,
        db_obj=request_obj,
        user_id=current_user.id,
        extend_by_days=extend_in.extend_by_days,
        extend_to=extend_in.extend_to,
    )
    return envelope(request_obj, message="Request expiration extended")


@router.post("/{request_id}/sync-offers-count", response_model=Envelope[RequestResponse])
def sync_request_offers_count(
    request_id: UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """
    Recount offers_count from the offers table. Staff only.
    """
    if not current_user.is_admin():
        raise ForbiddenException("Only staff can resync offer counts")
    request_obj = _get_request_or_404(db, request_id)

    count = crud_request.sync_offers_count(db, request_id=request_obj.id)
    db.refresh(request_obj)
    logger.info(f"offers_count of request {request_obj.id} resynced to {count}")
    return envelope(request_obj, message="Offer count synchronized")


@router.post("/{request_id}/images", response_model=Envelope[RequestResponse])
async def upload_request_images(
    request_id: UUID,
    files: List[UploadFile] = File(default=[]),
    image_urls: List[str] = Form(default=[]),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """
    Attach up to five images to a request.

    Accepts uploaded image files (image/*, 5MB each) and/or URLs of images
    already hosted elsewhere. If any upload fails the files stored so far
    are removed.
    """
    request_obj = _get_request_or_404(db, request_id)
    _ensure_can_manage(request_obj, current_user)

    files = [f for f in files if f is not None and (f.filename or f.size)]
    urls = [u.strip() for u in image_urls if u and u.strip()]
    if not files and not urls:
        raise BadRequestException("No images provided")

    if len(request_obj.images) + len(files) + len(urls) > MAX_REQUEST_IMAGES:
        raise BadRequestException(f"A maximum of {MAX_REQUEST_IMAGES} images are allowed per request")

    for url in urls:
        if not url.startswith(("http://", "https://")):
            raise BadRequestException(f"Invalid image URL: {url}")

    # Validate everything before storing anything
    buffers = []
    for upload in files:
        content = await upload.read()
        is_valid, error_msg = storage_service.validate_image(upload.content_type, len(content))
        if not is_valid:
            raise BadRequestException(f"{upload.filename or 'file'}: {error_msg}")
        buffers.append((upload, content))

    stored = []
    try:
        for upload, content in buffers:
            result = await storage_service.upload_file(
                content=content,
                folder=StorageFolder.REQUESTS,
                filename=upload.filename,
                content_type=upload.content_type,
                prefix=str(request_obj.id),
            )
            stored.append({"url": result["url"], "public_id": result["object_key"]})
    except RuntimeError as e:
        await storage_service.delete_files(image["public_id"] for image in stored)
        raise ExternalServiceException(f"Image upload failed: {e}")

    images = stored + [{"url": url, "public_id": None} for url in urls]
    try:
        request_obj = crud_request.add_images(db, db_obj=request_obj, images=images, user_id=current_user.id)
    except Exception:
        await storage_service.delete_files(image["public_id"] for image in stored)
        raise

    return envelope(request_obj, message=f"{len(images)} images uploaded")


@router.get("/{request_id}/history", response_model=PaginatedEnvelope[RequestHistoryResponse])
def get_request_history(
    request_id: UUID,
    action: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """Audit trail of a request, newest first."""
    _get_request_or_404(db, request_id)

    rows, total = crud_request.get_history(
        db,
        request_id=request_id,
        action=action,
        start_date=start_date,
        end_date=end_date,
        page=page,
        limit=limit,
    )
    return paginate(rows, total, page, limit)
