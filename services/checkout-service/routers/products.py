"""Products API router (read-only catalog)."""
from fastapi import APIRouter, Depends, HTTPException, Path
from sqlalchemy.orm import Session
from typing import List
from opentelemetry import trace

from database import get_db
from schemas import ProductResponse
from dependencies import get_catalog_service
from services.catalog_service import CatalogService

router = APIRouter(prefix="/products", tags=["products"])


@router.get("", response_model=List[ProductResponse])
async def get_products(
    db: Session = Depends(get_db),
    catalog: CatalogService = Depends(get_catalog_service)
):
    """List the catalog."""
    products = catalog.list_products(db)

    span = trace.get_current_span()
    span.set_attribute("product.count", len(products))

    return products


@router.get("/{product_id}", response_model=ProductResponse)
async def get_product(
    product_id: str = Path(..., description="Product ID"),
    db: Session = Depends(get_db),
    catalog: CatalogService = Depends(get_catalog_service)
):
    """Get product details."""
    product = catalog.find_by_id(db, product_id)
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")

    span = trace.get_current_span()
    span.set_attribute("product.id", product.id)

    return product
