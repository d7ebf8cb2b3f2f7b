from __future__ import annotations

import os
from contextlib import asynccontextmanager
from typing import Any

from fastapi import APIRouter, Body, Depends, FastAPI, File, Query, Request, Response, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .auth.dependencies import current_identity, require_profile, verify_admin
from .catalog.categories import CategoryService
from .catalog.deals import DealService
from .catalog.models import (
    Deal,
    IdentityContext,
    Restaurant,
    RestaurantCategory,
    RestaurantOut,
    RoleProfile,
)
from .catalog.restaurants import RestaurantService
from .data_ingestion.ingest import ingest_upload
from .errors import CatalogError, ErrorKind
from .logging_setup import configure_logging
from .store.client import Store, get_store


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    yield
    store = getattr(app.state, "store", None)
    if store is not None:
        store.close()


app = FastAPI(title="Restaurant Deals Catalog API", version="1.0.0", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=[os.environ.get("CORS_ORIGIN", "http://localhost:3000")],
    allow_methods=["*"],
    allow_headers=["*"],
)


# ── Error rendering ──────────────────────────────────────────────────────


@app.exception_handler(CatalogError)
def catalog_error_handler(request: Request, exc: CatalogError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    problems = "; ".join(
        f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()
    )
    error = CatalogError(ErrorKind.validation, problems or "Invalid request.")
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


# ── Service wiring ───────────────────────────────────────────────────────


def get_category_service(store: Store = Depends(get_store)) -> CategoryService:
    return CategoryService(store)


def get_restaurant_service(
    store: Store = Depends(get_store),
    categories: CategoryService = Depends(get_category_service),
) -> RestaurantService:
    return RestaurantService(store, categories)


def get_deal_service(store: Store = Depends(get_store)) -> DealService:
    return DealService(store)


def _not_found(what: str) -> CatalogError:
    return CatalogError(ErrorKind.not_found, f"{what} not found")


# ── Public endpoints ─────────────────────────────────────────────────────


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


public = APIRouter(prefix="/api")


@public.get("/restaurants", response_model=list[Restaurant])
def list_restaurants(
    user_lat: str | None = Query(default=None, alias="userLat"),
    user_lon: str | None = Query(default=None, alias="userLon"),
    store: Store = Depends(get_store),
    service: RestaurantService = Depends(get_restaurant_service),
) -> list[Restaurant]:
    return store.run_composite(
        lambda: service.list_restaurants(user_lat, user_lon), label="Restaurant listing"
    )


@public.get("/restaurants/{restaurant_id}/deals", response_model=list[Deal])
def list_restaurant_deals(
    restaurant_id: int,
    store: Store = Depends(get_store),
    service: DealService = Depends(get_deal_service),
) -> list[Deal]:
    return store.run_composite(
        lambda: service.list_for_restaurant(restaurant_id), label="Deal listing"
    )


@public.get("/deals", response_model=list[Deal])
def list_deals(
    store: Store = Depends(get_store),
    service: DealService = Depends(get_deal_service),
) -> list[Deal]:
    return store.run_composite(service.list_deals, label="Deal listing")


@public.get("/deals/{deal_id}", response_model=Deal)
def get_deal(deal_id: int, service: DealService = Depends(get_deal_service)) -> Deal:
    deal = service.find_by_id(deal_id)
    if deal is None:
        raise _not_found("Deal")
    return deal


@public.get("/restaurant-categories", response_model=list[RestaurantCategory])
def list_categories(
    store: Store = Depends(get_store),
    service: CategoryService = Depends(get_category_service),
) -> list[RestaurantCategory]:
    return store.run_composite(service.list_categories, label="Category listing")


@public.get("/restaurant-categories/{category_id}", response_model=RestaurantCategory)
def get_category(
    category_id: int, service: CategoryService = Depends(get_category_service)
) -> RestaurantCategory:
    category = service.find_by_id(category_id)
    if category is None:
        raise _not_found("Restaurant category")
    return category


@public.get("/users/me")
def get_me(profile: RoleProfile = Depends(require_profile)) -> dict[str, Any]:
    return {"profile": profile.model_dump(by_alias=True)}


# ── Admin endpoints ──────────────────────────────────────────────────────


admin = APIRouter(prefix="/api/admin", dependencies=[Depends(verify_admin)])


@admin.post("/restaurants/bulk-upload")
def bulk_upload_restaurants(
    file: UploadFile = File(...),
    identity: IdentityContext = Depends(current_identity),
    service: RestaurantService = Depends(get_restaurant_service),
) -> JSONResponse:
    report = ingest_upload(file, service, uploaded_by=identity.email)
    return JSONResponse(
        status_code=200 if report.attempted_insert else 400,
        content=report.model_dump(mode="json", by_alias=True),
    )


@admin.get("/restaurants", response_model=list[RestaurantOut])
def admin_list_restaurants(
    store: Store = Depends(get_store),
    service: RestaurantService = Depends(get_restaurant_service),
) -> list[RestaurantOut]:
    return store.run_composite(service.list_with_categories, label="Admin restaurant listing")


@admin.post("/restaurants", response_model=Restaurant, status_code=201)
def admin_create_restaurant(
    body: dict[str, Any] = Body(...),
    service: RestaurantService = Depends(get_restaurant_service),
) -> Restaurant:
    return service.create(body)


@admin.get("/restaurants/{restaurant_id}", response_model=RestaurantOut)
def admin_get_restaurant(
    restaurant_id: int,
    store: Store = Depends(get_store),
    service: RestaurantService = Depends(get_restaurant_service),
) -> RestaurantOut:
    restaurant = store.run_composite(
        lambda: service.get_with_categories(restaurant_id), label="Restaurant lookup"
    )
    if restaurant is None:
        raise _not_found("Restaurant")
    return restaurant


@admin.put("/restaurants/{restaurant_id}", response_model=RestaurantOut)
def admin_update_restaurant(
    restaurant_id: int,
    body: dict[str, Any] = Body(...),
    store: Store = Depends(get_store),
    service: RestaurantService = Depends(get_restaurant_service),
) -> RestaurantOut:
    restaurant = store.run_composite(
        lambda: service.update(restaurant_id, body), label="Restaurant update"
    )
    if restaurant is None:
        raise CatalogError(ErrorKind.not_found, "Restaurant not found or no changes made")
    return restaurant


@admin.delete("/restaurants/{restaurant_id}", status_code=204)
def admin_delete_restaurant(
    restaurant_id: int, service: RestaurantService = Depends(get_restaurant_service)
) -> Response:
    if not service.delete(restaurant_id):
        raise CatalogError(ErrorKind.not_found, "Restaurant not found or already deleted")
    return Response(status_code=204)


@admin.get("/deals", response_model=list[Deal])
def admin_list_deals(
    store: Store = Depends(get_store),
    service: DealService = Depends(get_deal_service),
) -> list[Deal]:
    return store.run_composite(service.list_deals, label="Admin deal listing")


@admin.post("/deals", response_model=Deal, status_code=201)
def admin_create_deal(
    body: dict[str, Any] = Body(...),
    service: DealService = Depends(get_deal_service),
) -> Deal:
    return service.create(body)


@admin.get("/deals/{deal_id}", response_model=Deal)
def admin_get_deal(deal_id: int, service: DealService = Depends(get_deal_service)) -> Deal:
    deal = service.find_by_id(deal_id)
    if deal is None:
        raise _not_found("Deal")
    return deal


@admin.put("/deals/{deal_id}", response_model=Deal)
def admin_update_deal(
    deal_id: int,
    body: dict[str, Any] = Body(...),
    service: DealService = Depends(get_deal_service),
) -> Deal:
    deal = service.update(deal_id, body)
    if deal is None:
        raise CatalogError(ErrorKind.not_found, "Deal not found or no changes made")
    return deal


@admin.delete("/deals/{deal_id}", status_code=204)
def admin_delete_deal(deal_id: int, service: DealService = Depends(get_deal_service)) -> Response:
    if not service.delete(deal_id):
        raise CatalogError(ErrorKind.not_found, "Deal not found or already deleted")
    return Response(status_code=204)


@admin.get("/categories", response_model=list[RestaurantCategory])
def admin_list_categories(
    store: Store = Depends(get_store),
    service: CategoryService = Depends(get_category_service),
) -> list[RestaurantCategory]:
    return store.run_composite(service.list_categories, label="Admin category listing")


app.include_router(public)
app.include_router(admin)
