import logging
import math
from fastapi import APIRouter, Depends, HTTPException, Query
from ..dependencies import Services, get_services
from ..errors import RecordNotFound
from ..models import DeletedUserResponse, InfoViewOut, Pagination, UserCreate, UserOut, UserPage
from ..storage.records import MAX_NAME_LENGTH

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["users"])


@router.get("/users", response_model=UserPage)
def list_users(
    page: int = Query(1),
    limit: int = Query(10),
    name: str | None = Query(None),
    services: Services = Depends(get_services),
):
    page = max(1, page)
    limit = max(1, min(100, limit))
    search_name = (name or "").strip() or None

    total = services.users.count(search_name)
    users = services.users.find(search_name, offset=(page - 1) * limit, limit=limit)
    total_pages = math.ceil(total / limit)
    return UserPage(
        data=[UserOut.model_validate(u) for u in users],
        pagination=Pagination(
            page=page,
            limit=limit,
            total=total,
            total_pages=total_pages,
            has_next=page < total_pages,
            has_prev=page > 1,
        ),
    )


@router.get("/users/{user_id}", response_model=UserOut)
def get_user(user_id: int, services: Services = Depends(get_services)):
    user = services.users.get(user_id)
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")
    return UserOut.model_validate(user)


@router.post("/users", response_model=UserOut, status_code=201)
def create_user(payload: UserCreate, services: Services = Depends(get_services)):
    name = (payload.name or "").strip()
    if not name:
        raise HTTPException(status_code=400, detail="Name must not be empty")
    if len(name) > MAX_NAME_LENGTH:
        raise HTTPException(status_code=400, detail=f"Name is longer than {MAX_NAME_LENGTH} characters")
    user = services.users.create(name)
    logger.info("Created user %s", user.id)
    return UserOut.model_validate(user)


@router.delete("/users/{user_id}", response_model=DeletedUserResponse)
def delete_user(user_id: int, services: Services = Depends(get_services)):
    try:
        user = services.users.delete(user_id)
    except RecordNotFound:
        raise HTTPException(status_code=404, detail="User not found")
    logger.info("Deleted user %s", user_id)
    return DeletedUserResponse(message="User deleted", deleted_user=UserOut.model_validate(user))


@router.get("/infoViews", response_model=list[InfoViewOut])
def list_info_views(services: Services = Depends(get_services)):
    return [InfoViewOut.model_validate(v) for v in services.users.list_info_views()]
