from fastapi import APIRouter, Depends
from pymongo.database import Database

from database import get_db
from search import approved

router = APIRouter(prefix="/api/stats", tags=["stats"])


@router.get("/")
def public_stats(db: Database = Depends(get_db)):
    """Landing page counters."""
    return {
        "success": True,
        "stats": {
            "totalProperties": db["property"].count_documents({}),
            "activeListings": db["property"].count_documents(approved()),
            "totalUsers": db["user"].count_documents({}),
            "completedTransactions": db["application"].count_documents({"status": "approved"}),
        },
    }
