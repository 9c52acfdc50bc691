from fastapi import APIRouter

from procure_ledger.api.v1 import bills, goods_receipts, matches, purchase_orders

api_router = APIRouter()

api_router.include_router(goods_receipts.router, prefix="/goods-receipts", tags=["goods-receipts"])
api_router.include_router(matches.router, prefix="/three-way-matches", tags=["three-way-matches"])
api_router.include_router(bills.router, prefix="/bills", tags=["bills"])
api_router.include_router(purchase_orders.router, prefix="/purchase-orders", tags=["purchase-orders"])
