from fastapi import APIRouter

from app.api.v1.endpoints import admin_plans, articles, billing


api_router = APIRouter()

api_router.include_router(billing.router, prefix="/billing", tags=["billing"])
api_router.include_router(admin_plans.router, prefix="/admin/plans", tags=["admin-plans"])
api_router.include_router(articles.router, prefix="/articles", tags=["articles"])
