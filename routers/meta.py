from fastapi import APIRouter, Depends, Request
from pymongo.database import Database

from database import PRODUCTS, USERS, get_db

router = APIRouter(tags=["meta"])

SERVICE_NAME = "connect-backend"


@router.get("/health")
def health():
    return {"status": "ok", "service": SERVICE_NAME}


@router.get("/stats")
def stats(db: Database = Depends(get_db)):
    return {
        "totalUsers": db[USERS].count_documents({}),
        "totalProducts": db[PRODUCTS].count_documents({"approved": True}),
    }


@router.get("/contact-info")
def contact_info(request: Request):
    settings = request.app.state.settings
    return {
        "email": settings.CONTACT_EMAIL,
        "phone": settings.CONTACT_PHONE,
        "location": settings.CONTACT_LOCATION,
    }
