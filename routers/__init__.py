from fastapi import APIRouter

from routers import admin, auth, meta, products

api_router = APIRouter(prefix="/api")
api_router.include_router(meta.router)
api_router.include_router(auth.router)
api_router.include_router(products.router)
api_router.include_router(admin.router)
