"""
Vidya Test Series - API application
"""

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from vidya.auth.firebase_auth import init_firebase
from vidya.config import settings
from vidya.database import close_mongo, connect_mongo, create_indexes
from vidya.errors import register_error_handlers
from vidya.exams.exam_router import router as exam_router
from vidya.leaderboard.leaderboard_router import router as leaderboard_router
from vidya.purchases.purchase_router import router as purchase_router
from vidya.series.series_router import router as series_router
from vidya.settings.settings_router import router as settings_router
from vidya.system.health_router import router as health_router
from vidya.users.user_router import router as user_router

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Vidya Test Series API")


@app.on_event("startup")
async def startup_event():
    init_firebase(settings)
    db = connect_mongo(app)
    await create_indexes(db)


@app.on_event("shutdown")
async def shutdown_event():
    close_mongo(app)


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_error_handlers(app)


# ==================== ROUTER REGISTRATION ====================
app.include_router(health_router, prefix="/api")
app.include_router(user_router, prefix="/api/users")
app.include_router(exam_router, prefix="/api/tests")
app.include_router(series_router, prefix="/api/test-series")
app.include_router(purchase_router, prefix="/api/purchases")
app.include_router(leaderboard_router, prefix="/api/leaderboard")
app.include_router(settings_router, prefix="/api/admin/settings")
# ============================================================

logger.info("Routes registered: %d", len(app.routes))


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("vidya.main:app", host="0.0.0.0", port=settings.PORT)
