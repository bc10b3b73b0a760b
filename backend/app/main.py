# main.py
from contextlib import asynccontextmanager
from datetime import date, timedelta
from typing import Any, Dict, List, Optional

import structlog
from fastapi import Depends, FastAPI, HTTPException, Query, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials

from . import ai_helpers, auth, bidding, config, models
from .changefeed import ChangeFeed
from .deps import get_current_user, get_feed, get_local_store, get_store, require_roles, security
from .logging_config import setup_logging
from .models import UserRole
from .storage import LocalStore, StorageError, load_cloud_config, save_cloud_config, select_store

logger = structlog.get_logger()

BUYERS = (UserRole.BUYER, UserRole.SYS_ADMIN)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    local = get_local_store()
    store = select_store(local)
    logger.info("starting_quickbid", env=config.ENVIRONMENT, mode=store.mode, data_dir=str(local.data_dir))
    try:
        auth.ensure_seed_users(store)
    except StorageError as e:
        logger.warning("seed_users_failed", error=str(e))
    yield


app = FastAPI(title=config.APP_NAME, version=config.APP_VERSION, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(StorageError)
async def storage_error_handler(request: Request, exc: StorageError) -> JSONResponse:
    logger.error("storage_write_failed", path=request.url.path, error=str(exc))
    return JSONResponse(
        status_code=status.HTTP_502_BAD_GATEWAY,
        content={"detail": "Sync failed, check the network or cloud configuration"},
    )


def _get_rfq(store, rfq_id: str) -> Dict[str, Any]:
    rows = store.select("rfqs", id=rfq_id)
    if not rows:
        raise HTTPException(status_code=404, detail="RFQ not found")
    return rows[0]


@app.get("/health")
def health(store=Depends(get_store)):
    return {"status": "healthy", "version": config.APP_VERSION, "mode": store.mode}


# --- auth endpoints ---

@app.post("/api/v1/auth/login", response_model=models.SessionResponse)
def login(body: models.LoginRequest, local: LocalStore = Depends(get_local_store), store=Depends(get_store)):
    user = auth.authenticate(local, store, body.id, body.password)
    if not user:
        logger.info("login_failed", user_id=body.id)
        raise HTTPException(status_code=401, detail="Incorrect account or password")
    token = auth.open_session(local, user["id"])
    logger.info("login", user_id=user["id"], role=user["role"])
    return {"token": token, "user": auth.public_user(user)}


@app.post("/api/v1/auth/register", response_model=models.SessionResponse, status_code=201)
def register(
    body: models.RegisterRequest,
    local: LocalStore = Depends(get_local_store),
    store=Depends(get_store),
    changes: ChangeFeed = Depends(get_feed),
):
    if body.role == UserRole.SYS_ADMIN:
        raise HTTPException(status_code=403, detail="Only buyer or vendor accounts can be registered")
    user = _create_user(local, store, body)
    changes.publish("users")
    token = auth.open_session(local, user["id"])
    return {"token": token, "user": auth.public_user(user)}


@app.post("/api/v1/auth/logout", status_code=204)
def logout(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    local: LocalStore = Depends(get_local_store),
):
    if credentials is not None:
        auth.close_session(local, credentials.credentials)
    return Response(status_code=204)


@app.get("/api/v1/auth/me", response_model=models.UserPublic)
def me(user: dict = Depends(get_current_user)):
    return auth.public_user(user)


# --- user administration ---

def _create_user(local: LocalStore, store, body: models.RegisterRequest) -> Dict[str, Any]:
    user_id = body.id.strip()
    if not user_id or not body.password or not body.name.strip():
        raise HTTPException(status_code=422, detail="Please fill in all required fields")
    if auth.lookup_user(local, store, user_id):
        raise HTTPException(status_code=409, detail="ID already exists")
    user = {
        "id": user_id,
        "name": body.name.strip(),
        "role": body.role.value,
        "company": body.company or None,
        "password": body.password,
        "created_at": bidding.now_iso(),
    }
    store.upsert("users", user)
    logger.info("user_created", user_id=user_id, role=user["role"])
    return user


@app.get("/api/v1/users", response_model=List[models.UserPublic])
def list_users(store=Depends(get_store), user: dict = Depends(require_roles(UserRole.SYS_ADMIN))):
    return [auth.public_user(u) for u in store.select("users")]


@app.post("/api/v1/users", response_model=models.UserPublic, status_code=201)
def create_user(
    body: models.UserCreate,
    local: LocalStore = Depends(get_local_store),
    store=Depends(get_store),
    changes: ChangeFeed = Depends(get_feed),
    admin: dict = Depends(require_roles(UserRole.SYS_ADMIN)),
):
    user = _create_user(local, store, body)
    changes.publish("users")
    return auth.public_user(user)


@app.put("/api/v1/users/{user_id}/password", response_model=models.UserPublic)
def reset_password(
    user_id: str,
    body: models.PasswordReset,
    store=Depends(get_store),
    changes: ChangeFeed = Depends(get_feed),
    current: dict = Depends(get_current_user),
):
    if current["role"] != UserRole.SYS_ADMIN.value and current["id"] != user_id:
        raise HTTPException(status_code=403, detail="You can only change your own password")
    if not body.password:
        raise HTTPException(status_code=422, detail="Password cannot be empty")
    target = auth.find_user(store, user_id)
    if not target:
        raise HTTPException(status_code=404, detail="User not found")
    target = {**target, "password": body.password}
    store.upsert("users", target)
    changes.publish("users")
    logger.info("password_reset", user_id=user_id, by=current["id"])
    return auth.public_user(target)


@app.delete("/api/v1/users/{user_id}")
def delete_user(
    user_id: str,
    local: LocalStore = Depends(get_local_store),
    store=Depends(get_store),
    changes: ChangeFeed = Depends(get_feed),
    admin: dict = Depends(require_roles(UserRole.SYS_ADMIN)),
):
    if user_id == config.PROTECTED_USER_ID:
        raise HTTPException(status_code=400, detail="The built-in admin account cannot be deleted")
    if not auth.find_user(store, user_id):
        raise HTTPException(status_code=404, detail="User not found")
    store.delete("users", id=user_id)
    auth.drop_user_sessions(local, user_id)
    changes.publish("users")
    logger.info("user_deleted", user_id=user_id, by=admin["id"])
    return {"status": "deleted", "id": user_id}


# --- RFQ endpoints ---

@app.get("/api/v1/rfqs", response_model=List[models.RFQ])
def list_rfqs(store=Depends(get_store), user: dict = Depends(get_current_user)):
    rfqs = store.select("rfqs")
    return sorted(rfqs, key=lambda r: r.get("created_at", ""), reverse=True)


@app.post("/api/v1/rfqs", response_model=models.RFQ, status_code=201)
def create_rfq(
    body: models.RFQCreate,
    store=Depends(get_store),
    changes: ChangeFeed = Depends(get_feed),
    user: dict = Depends(require_roles(*BUYERS)),
):
    title = body.title.strip()
    if not title:
        raise HTTPException(status_code=422, detail="Please enter a project title")
    deadline = body.deadline or (date.today() + timedelta(days=30))
    rfq = {
        "id": bidding.new_id("RFQ"),
        "title": title,
        "description": body.description,
        "deadline": deadline.isoformat(),
        "budget": body.budget,
        "status": body.status.value,
        "created_at": bidding.now_iso(),
        "creator_id": user["id"],
        "items": [
            {"id": item.id or bidding.new_id("ITEM"), "name": item.name, "quantity": item.quantity, "unit": item.unit}
            for item in body.items
        ],
    }
    store.upsert("rfqs", rfq)
    changes.publish("rfqs")
    logger.info("rfq_created", rfq_id=rfq["id"], creator_id=user["id"], items=len(rfq["items"]))
    return rfq


@app.get("/api/v1/rfqs/{rfq_id}", response_model=models.RFQ)
def get_rfq(rfq_id: str, store=Depends(get_store), user: dict = Depends(get_current_user)):
    return _get_rfq(store, rfq_id)


@app.delete("/api/v1/rfqs/{rfq_id}")
def delete_rfq(
    rfq_id: str,
    store=Depends(get_store),
    changes: ChangeFeed = Depends(get_feed),
    user: dict = Depends(get_current_user),
):
    rfq = _get_rfq(store, rfq_id)
    if not bidding.can_delete_rfq(user, rfq):
        raise HTTPException(status_code=403, detail="You cannot delete this RFQ")
    removed_bids = store.delete("bids", rfq_id=rfq_id)
    store.delete("rfqs", id=rfq_id)
    changes.publish("bids")
    changes.publish("rfqs")
    logger.info("rfq_deleted", rfq_id=rfq_id, bids=removed_bids, by=user["id"])
    return {"status": "deleted", "id": rfq_id, "bids_removed": removed_bids}


# --- bids ---

@app.get("/api/v1/rfqs/{rfq_id}/bids", response_model=List[models.Bid])
def list_bids(rfq_id: str, store=Depends(get_store), user: dict = Depends(get_current_user)):
    _get_rfq(store, rfq_id)
    return bidding.visible_bids(store.select("bids", rfq_id=rfq_id), rfq_id, user)


@app.post("/api/v1/rfqs/{rfq_id}/bids", response_model=models.Bid)
def submit_bid(
    rfq_id: str,
    body: models.BidSubmit,
    store=Depends(get_store),
    changes: ChangeFeed = Depends(get_feed),
    user: dict = Depends(require_roles(UserRole.VENDOR)),
):
    rfq = _get_rfq(store, rfq_id)
    if rfq.get("status") != models.RFQStatus.OPEN.value:
        raise HTTPException(status_code=409, detail="This RFQ is no longer accepting bids")
    existing = bidding.find_bid(store.select("bids", rfq_id=rfq_id), rfq_id, user["id"])
    try:
        bid = bidding.build_bid(
            rfq,
            user,
            existing=existing,
            amount=body.amount,
            item_quotes=[q.model_dump() for q in body.item_quotes],
            currency=body.currency,
            delivery_date=body.delivery_date,
            notes=body.notes,
        )
    except bidding.BidError as e:
        raise HTTPException(status_code=422, detail=str(e))
    store.upsert("bids", bid)
    changes.publish("bids")
    logger.info("bid_submitted", rfq_id=rfq_id, vendor_id=user["id"], amount=bid["amount"],
                replaced=existing is not None)
    return bid


@app.get("/api/v1/rfqs/{rfq_id}/board", response_model=models.BidBoard)
def bid_board(rfq_id: str, store=Depends(get_store), user: dict = Depends(get_current_user)):
    rfq = _get_rfq(store, rfq_id)
    rfq_bids = store.select("bids", rfq_id=rfq_id)
    visible = bidding.visible_bids(rfq_bids, rfq_id, user)
    return {
        "rfq": rfq,
        "bids": bidding.rank_bids(visible),
        "lowest": bidding.lowest_bid(visible),
        "my_bid": bidding.find_bid(rfq_bids, rfq_id, user["id"]),
    }


@app.get("/api/v1/rfqs/{rfq_id}/export.csv")
def export_csv(rfq_id: str, store=Depends(get_store), user: dict = Depends(get_current_user)):
    rfq = _get_rfq(store, rfq_id)
    bids = bidding.visible_bids(store.select("bids", rfq_id=rfq_id), rfq_id, user)
    return Response(
        content=bidding.bids_to_csv(rfq, bids),
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{rfq_id}-bids.csv"'},
    )


@app.get("/api/v1/rfqs/{rfq_id}/export.json")
def export_json(rfq_id: str, store=Depends(get_store), user: dict = Depends(get_current_user)):
    rfq = _get_rfq(store, rfq_id)
    bids = bidding.visible_bids(store.select("bids", rfq_id=rfq_id), rfq_id, user)
    return Response(
        content=bidding.bids_to_json(rfq, bids),
        media_type="application/json",
        headers={"Content-Disposition": f'attachment; filename="{rfq_id}-bids.json"'},
    )


@app.post("/api/v1/rfqs/{rfq_id}/analysis", response_model=models.Analysis)
def analyze_rfq(rfq_id: str, store=Depends(get_store), user: dict = Depends(require_roles(*BUYERS))):
    rfq = _get_rfq(store, rfq_id)
    bids = store.select("bids", rfq_id=rfq_id)
    summary = ai_helpers.analyze_bids(rfq["title"], bids)
    return {"rfq_id": rfq_id, "summary": summary}


# --- runtime cloud configuration ---

def _cloud_status(local: LocalStore) -> Dict[str, Any]:
    cfg = load_cloud_config(local)
    return {
        "url": cfg["url"],
        "key_set": bool(cfg["key"]),
        "mode": "cloud" if cfg["url"] and cfg["key"] else "local",
    }


@app.get("/api/v1/cloud-config", response_model=models.CloudStatus)
def get_cloud_config(local: LocalStore = Depends(get_local_store), user: dict = Depends(get_current_user)):
    return _cloud_status(local)


@app.put("/api/v1/cloud-config", response_model=models.CloudStatus)
def put_cloud_config(
    body: models.CloudConfig,
    local: LocalStore = Depends(get_local_store),
    changes: ChangeFeed = Depends(get_feed),
    admin: dict = Depends(require_roles(UserRole.SYS_ADMIN)),
):
    try:
        key = body.key if body.key is not None else load_cloud_config(local)["key"]
        save_cloud_config(local, body.url, key)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    changes.publish("config")
    return _cloud_status(local)


# --- change feed ---

@app.get("/api/v1/changes", response_model=models.ChangeNotice)
def wait_for_changes(
    since: int = Query(0, ge=0),
    timeout: float = Query(25.0, ge=0, le=60),
    changes: ChangeFeed = Depends(get_feed),
):
    revision, tables = changes.wait(since, timeout)
    return {"revision": revision, "tables": tables}
