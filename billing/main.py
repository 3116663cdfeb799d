from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from billing.core.config import settings
from billing.common.error_handlers import register_error_handlers
from billing.api.v1 import client, product, order, invoice, dashboard

app = FastAPI(title="Billing & Ledger Core", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_error_handlers(app)

# Register API routers
app.include_router(client.router, prefix="/api/v1/clients", tags=["clients"])
app.include_router(product.router, prefix="/api/v1/products", tags=["products"])
app.include_router(order.router, prefix="/api/v1/orders", tags=["orders"])
app.include_router(invoice.router, prefix="/api/v1/invoices", tags=["invoices"])
app.include_router(
    dashboard.router, prefix="/api/v1/dashboard", tags=["dashboard"])


@app.get("/")
def read_root():
    return {"message": "Welcome to the Billing & Ledger Core APIs!", "env": settings.APP_ENV}
