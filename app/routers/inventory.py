from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.db import get_db
from app.services.inventory_service import list_low_stock_rows

router = APIRouter(prefix='/inventory', tags=['inventory'])


@router.get('/low-stock')
def low_stock(limit: int | None = Query(default=None, ge=1, le=500), db: Session = Depends(get_db)):
    return {'inventory': list_low_stock_rows(db, limit=limit)}
