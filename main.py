import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from auth import (
    USERS,
    create_token,
    get_current_user,
    hash_password,
    public_user,
    require_admin,
    require_admin_secret,
    verify_password,
)
from config import Settings
from database import connect, serialize_doc
from errors import ShopError
from notifications import ResendNotifier
from orders import ORDERS, PRODUCTS, OrderService
from payments import RazorpayClient, new_receipt
from reminders import reminder_loop
from schemas import (
    Banner,
    BannerStatusRequest,
    BannerUpdateRequest,
    LoginRequest,
    OrderCreateRequest,
    PaymentVerifyRequest,
    Product,
    ProductUpdateRequest,
    RemoteOrderRequest,
    SetRoleRequest,
    SignupRequest,
    StatusUpdateRequest,
    User,
)

logger = logging.getLogger(__name__)

BANNERS = "banners"

router = APIRouter()


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def get_store(request: Request):
    return request.app.state.store


def get_orders(request: Request) -> OrderService:
    return request.app.state.orders


def get_gateway(request: Request) -> RazorpayClient:
    return request.app.state.gateway


def by_created_desc(docs: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return sorted(docs, key=lambda d: str(d.get("createdAt") or ""), reverse=True)


# Routes
@router.get("/")
def root():
    return {"message": "Storefront API running"}


@router.get("/api/health")
def health(request: Request):
    store = request.app.state.store
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_name": getattr(store, "name", None),
        "connection_status": "Not Connected",
        "collections": [],
    }
    try:
        response["collections"] = store.collections()[:10]
        response["database"] = "✅ Connected & Working"
        response["connection_status"] = "Connected"
    except Exception as e:
        response["database"] = f"⚠️  Connected but Error: {str(e)[:50]}"
    return response


# Auth
@router.post("/api/auth/signup")
def signup(req: SignupRequest, request: Request, store=Depends(get_store)):
    if store.query(USERS, {"email": req.email}):
        raise HTTPException(status_code=400, detail="Email already registered")
    now = now_utc()
    user = User(name=req.name, email=req.email, password_hash=hash_password(req.password)).to_document()
    user_id = store.add(USERS, {**user, "createdAt": now, "updatedAt": now})
    created = {**user, "id": user_id}
    token = create_token(created, request.app.state.settings.jwt_secret)
    return {"token": token, "user": public_user(created)}


@router.post("/api/auth/login")
def login(req: LoginRequest, request: Request, store=Depends(get_store)):
    users = store.query(USERS, {"email": req.email})
    user = users[0] if users else None
    if not user or not verify_password(req.password, user.get("passwordHash")):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    token = create_token(user, request.app.state.settings.jwt_secret)
    return {"token": token, "user": public_user(user)}


@router.post("/api/admin/set-role", dependencies=[Depends(require_admin_secret)])
def set_role(req: SetRoleRequest, store=Depends(get_store)):
    if not req.uid and not req.email:
        raise HTTPException(status_code=400, detail="uid or email is required")
    target_id = req.uid
    if not target_id:
        matches = store.query(USERS, {"email": req.email})
        if not matches:
            raise HTTPException(status_code=404, detail="User not found; provide uid to create")
        target_id = matches[0]["id"]
    existing = store.get(USERS, target_id)
    now = now_utc()
    updates: Dict[str, Any] = {"role": req.role, "updatedAt": now}
    if req.email:
        updates["email"] = req.email
    if req.display_name:
        updates["name"] = req.display_name
    if req.phone:
        updates["phone"] = req.phone
    if existing is None:
        updates.setdefault("name", req.display_name or (req.email or "").split("@")[0])
        updates["createdAt"] = now
    store.set(USERS, target_id, updates, merge=True)
    return public_user(store.get(USERS, target_id))


@router.get("/api/admin/stats")
def admin_stats(admin=Depends(require_admin), store=Depends(get_store)):
    return {
        "users": store.count(USERS),
        "orders": store.count(ORDERS),
        "products": store.count(PRODUCTS),
    }


# Products
@router.get("/api/products")
def list_products(
    category: Optional[str] = None,
    brand: Optional[str] = None,
    search: Optional[str] = None,
    min_price: Optional[float] = Query(None, alias="minPrice"),
    max_price: Optional[float] = Query(None, alias="maxPrice"),
    sort: Optional[str] = None,
    store=Depends(get_store),
):
    products = store.query(PRODUCTS)
    if category:
        products = [p for p in products if p.get("category") == category]
    if brand:
        brands = brand.split(",")
        products = [p for p in products if p.get("brand") in brands]
    if search:
        needle = search.lower()
        products = [
            p for p in products
            if needle in (p.get("title") or "").lower() or needle in (p.get("brand") or "").lower()
        ]
    if min_price is not None:
        products = [p for p in products if float(p.get("price") or 0) >= min_price]
    if max_price is not None:
        products = [p for p in products if float(p.get("price") or 0) <= max_price]

    if sort == "price-low":
        products.sort(key=lambda p: float(p.get("price") or 0))
    elif sort == "price-high":
        products.sort(key=lambda p: float(p.get("price") or 0), reverse=True)
    elif sort == "rating":
        products.sort(key=lambda p: float(p.get("rating") or 0), reverse=True)
    elif sort == "newest":
        products = by_created_desc(products)
    return [serialize_doc(p) for p in products]


@router.get("/api/products/categories/list")
def list_categories(store=Depends(get_store)):
    seen: List[str] = []
    for p in store.query(PRODUCTS):
        slug = p.get("category")
        if slug and slug not in seen:
            seen.append(slug)
    return [{"id": i + 1, "name": slug[:1].upper() + slug[1:], "slug": slug} for i, slug in enumerate(seen)]


@router.get("/api/products/{product_id}")
def get_product(product_id: str, store=Depends(get_store)):
    p = store.get(PRODUCTS, product_id)
    if not p:
        raise HTTPException(status_code=404, detail="Product not found")
    return serialize_doc(p)


@router.post("/api/products", status_code=201)
def create_product(req: Product, admin=Depends(require_admin), store=Depends(get_store)):
    now = now_utc()
    doc = {**req.to_document(), "createdAt": now, "updatedAt": now}
    product_id = store.add(PRODUCTS, doc)
    return serialize_doc({**doc, "id": product_id})


@router.put("/api/products/{product_id}")
def update_product(product_id: str, req: ProductUpdateRequest, admin=Depends(require_admin), store=Depends(get_store)):
    updates = req.model_dump(by_alias=True, exclude_none=True)
    if not updates:
        raise HTTPException(status_code=400, detail="No updates provided")
    if store.get(PRODUCTS, product_id) is None:
        raise HTTPException(status_code=404, detail="Product not found")
    updates["updatedAt"] = now_utc()
    store.set(PRODUCTS, product_id, updates, merge=True)
    return serialize_doc(store.get(PRODUCTS, product_id))


@router.delete("/api/products/{product_id}")
def delete_product(product_id: str, admin=Depends(require_admin), store=Depends(get_store)):
    if not store.delete(PRODUCTS, product_id):
        raise HTTPException(status_code=404, detail="Product not found")
    return {"success": True, "deleted": product_id}


# Banners
@router.get("/api/banners")
def list_banners(active: Optional[str] = None, store=Depends(get_store)):
    banners = store.query(BANNERS)
    if active == "true":
        banners = [b for b in banners if b.get("active")]
    return [serialize_doc(b) for b in by_created_desc(banners)]


@router.get("/api/banners/{banner_id}")
def get_banner(banner_id: str, store=Depends(get_store)):
    banner = store.get(BANNERS, banner_id)
    if not banner:
        raise HTTPException(status_code=404, detail="Banner not found")
    return serialize_doc(banner)


@router.post("/api/banners", status_code=201)
def create_banner(req: Banner, admin=Depends(require_admin), store=Depends(get_store)):
    now = now_utc()
    doc = {**req.to_document(), "createdAt": now, "updatedAt": now}
    banner_id = store.add(BANNERS, doc)
    return serialize_doc({**doc, "id": banner_id})


def _merge_banner(store, banner_id: str, updates: Dict[str, Any]):
    if store.get(BANNERS, banner_id) is None:
        raise HTTPException(status_code=404, detail="Banner not found")
    store.set(BANNERS, banner_id, {**updates, "updatedAt": now_utc()}, merge=True)
    return serialize_doc(store.get(BANNERS, banner_id))


@router.put("/api/banners/{banner_id}")
def update_banner(banner_id: str, req: BannerUpdateRequest, admin=Depends(require_admin), store=Depends(get_store)):
    return _merge_banner(store, banner_id, req.model_dump(by_alias=True, exclude_none=True))


@router.patch("/api/banners/{banner_id}/status")
def set_banner_status(banner_id: str, req: BannerStatusRequest, admin=Depends(require_admin), store=Depends(get_store)):
    return _merge_banner(store, banner_id, {"active": req.active})


@router.delete("/api/banners/{banner_id}")
def delete_banner(banner_id: str, admin=Depends(require_admin), store=Depends(get_store)):
    if not store.delete(BANNERS, banner_id):
        raise HTTPException(status_code=404, detail="Banner not found")
    return {"success": True, "deleted": banner_id}


# Orders
@router.get("/api/orders")
def list_orders(admin=Depends(require_admin), orders: OrderService = Depends(get_orders)):
    return [serialize_doc(o) for o in orders.list_orders()]


@router.get("/api/orders/user/{user_id}")
def list_user_orders(user_id: str, user=Depends(get_current_user), orders: OrderService = Depends(get_orders)):
    if user["id"] != user_id and user.get("role") != "admin":
        raise HTTPException(status_code=403, detail="Not allowed")
    return [serialize_doc(o) for o in orders.list_user_orders(user_id)]


@router.post("/api/orders/payment/razorpay-order")
def create_razorpay_order(req: RemoteOrderRequest, gateway: RazorpayClient = Depends(get_gateway)):
    return gateway.create_remote_order(req.amount, new_receipt())


@router.post("/api/orders/payment/verify")
def verify_payment(req: PaymentVerifyRequest, gateway: RazorpayClient = Depends(get_gateway)):
    if not gateway.verify(req.gateway_order_id, req.gateway_payment_id, req.signature):
        raise HTTPException(status_code=400, detail="Invalid payment signature")
    return {"verified": True}


@router.get("/api/orders/{order_id}")
def get_order(order_id: str, orders: OrderService = Depends(get_orders)):
    return serialize_doc(orders.get_order(order_id))


@router.post("/api/orders", status_code=201)
def create_order(req: OrderCreateRequest, orders: OrderService = Depends(get_orders)):
    return serialize_doc(orders.place_order(req))


@router.put("/api/orders/{order_id}/status")
def update_order_status(
    order_id: str, req: StatusUpdateRequest, admin=Depends(require_admin), orders: OrderService = Depends(get_orders)
):
    return serialize_doc(orders.update_status(order_id, req.status))


@router.get("/api/orders/{order_id}/status-options")
def order_status_options(order_id: str, admin=Depends(require_admin), orders: OrderService = Depends(get_orders)):
    return {"orderId": order_id, "options": orders.status_options(order_id)}


# Seed demo products on startup
DEMO_PRODUCTS: List[dict] = [
    {
        "title": "HP Pavilion 15",
        "brand": "HP",
        "category": "laptops",
        "description": "15.6-inch FHD, Intel Core i5, 16GB RAM",
        "price": 62990,
        "images": ["https://images.unsplash.com/photo-1496181133206-80ce9b88a853?w=1200"],
        "rating": 4.3,
        "specs": {"ram": "16GB", "storage": "512GB SSD"},
        "stock": 12,
    },
    {
        "title": "Dell Inspiron 14",
        "brand": "Dell",
        "category": "laptops",
        "description": "14-inch 2-in-1, AMD Ryzen 7",
        "price": 71490,
        "images": ["https://images.unsplash.com/photo-1518770660439-4636190af475?w=1200"],
        "rating": 4.4,
        "specs": {"ram": "16GB", "storage": "1TB SSD"},
        "stock": 8,
    },
    {
        "title": "Lenovo Legion Tower 5",
        "brand": "Lenovo",
        "category": "desktops",
        "description": "Gaming desktop, RTX 4060, Ryzen 7",
        "price": 124990,
        "images": ["https://images.unsplash.com/photo-1593642632559-0c6d3fc62b89?w=1200"],
        "rating": 4.6,
        "specs": {"gpu": "RTX 4060", "ram": "32GB"},
        "stock": 4,
    },
    {
        "title": "Logitech MX Master 3S",
        "brand": "Logitech",
        "category": "accessories",
        "description": "Advanced wireless mouse",
        "price": 9995,
        "images": ["https://images.unsplash.com/photo-1527814050087-3793815479db?w=1200"],
        "rating": 4.7,
        "specs": {"dpi": 8000},
        "stock": 40,
    },
    {
        "title": "Samsung 27\" Monitor",
        "brand": "Samsung",
        "category": "monitors",
        "description": "27-inch IPS, 75Hz, borderless",
        "price": 15499,
        "images": ["https://images.unsplash.com/photo-1527443224154-c4a3942d3acf?w=1200"],
        "rating": 4.2,
        "specs": {"resolution": "1920x1080"},
        "stock": 20,
    },
    {
        "title": "Canon PIXMA G3770",
        "brand": "Canon",
        "category": "printers",
        "description": "Ink tank printer with Wi-Fi",
        "price": 16999,
        "images": ["https://images.unsplash.com/photo-1612815154858-60aa4c59eaa6?w=1200"],
        "rating": 4.1,
        "specs": {"connectivity": "Wi-Fi"},
        "stock": 15,
    },
]


def seed_products_if_empty(store) -> int:
    if store.count(PRODUCTS) > 0:
        return 0
    now = now_utc()
    for prod in DEMO_PRODUCTS:
        store.add(PRODUCTS, {**Product(**prod).to_document(), "createdAt": now, "updatedAt": now})
    logger.info("Seeded %d demo products", len(DEMO_PRODUCTS))
    return len(DEMO_PRODUCTS)


# App init
def create_app(settings: Optional[Settings] = None, store=None, notifier=None, gateway=None) -> FastAPI:
    """Build the API with explicitly constructed clients.

    Anything not passed in is built from ``settings`` and closed on shutdown.
    """
    settings = settings or Settings.from_env()
    owned = []
    if store is None:
        store = connect(settings.database_url, settings.database_name)
        owned.append(store)
    if notifier is None:
        notifier = ResendNotifier(settings.resend_api_key, settings.admin_email, settings.mail_from)
        owned.append(notifier)
    if gateway is None:
        gateway = RazorpayClient(settings.razorpay_key_id, settings.razorpay_key_secret)
        owned.append(gateway)

    app = FastAPI(title="Storefront API")
    app.state.settings = settings
    app.state.store = store
    app.state.notifier = notifier
    app.state.gateway = gateway
    app.state.orders = OrderService(
        store,
        notifier,
        strict_transitions=settings.strict_status_transitions,
        max_attempts=settings.transaction_max_attempts,
    )
    app.state.reminder_task = None

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(ShopError)
    async def shop_error_handler(request: Request, exc: ShopError):
        if exc.status_code >= 500:
            logger.error("%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc)
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(status_code=400, content={"detail": jsonable_encoder(exc.errors())})

    @app.on_event("startup")
    async def on_startup():
        if settings.seed_demo_products:
            try:
                await asyncio.to_thread(seed_products_if_empty, store)
            except Exception:
                logger.exception("Seeding demo products failed")
        if settings.reminder_sweep_interval_seconds > 0:
            app.state.reminder_task = asyncio.create_task(
                reminder_loop(store, notifier, settings.reminder_sweep_interval_seconds)
            )

    @app.on_event("shutdown")
    async def on_shutdown():
        task = app.state.reminder_task
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        for client in owned:
            client.close()

    app.include_router(router)
    return app


if __name__ == "__main__":
    import uvicorn

    settings = Settings.from_env()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run(create_app(settings), host="0.0.0.0", port=settings.port)
