from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.routers.material_folders import router as material_folders_router
from app.api.routers.materials import router as materials_router
from app.api.routers.order_attachments import router as order_attachments_router
from app.api.routers.orders import router as orders_router
from app.api.routers.storage_settings import router as storage_settings_router
from app.core.flow_logging import configure_app_logging

configure_app_logging()

app = FastAPI(title="Order Center API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"], # For development; restrict to the admin console domain in production
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(orders_router, prefix="/api")
app.include_router(order_attachments_router, prefix="/api")
app.include_router(material_folders_router, prefix="/api")
app.include_router(materials_router, prefix="/api")
app.include_router(storage_settings_router, prefix="/api")

@app.get("/health")
def health():
    return {"status": "up"}
