from fastapi import APIRouter

from app.api.v1.health import router as health_router
from app.api.v1.maintenance.router import router as maintenance_router
from app.api.v1.notifications.router import router as notifications_router
from app.api.v1.push_tokens.router import router as push_tokens_router
from app.api.v1.recipients.router import router as recipients_router
from app.api.v1.retry.router import router as retry_router

api_router = APIRouter()
api_router.include_router(health_router, prefix="/health", tags=["health"])
api_router.include_router(recipients_router, prefix="/notifications/recipients", tags=["recipients"])
api_router.include_router(retry_router, prefix="/notifications/retry", tags=["retry"])
api_router.include_router(notifications_router, prefix="/notifications", tags=["notifications"])
# maintenance before push-token so /push-token/maintenance is not shadowed
api_router.include_router(maintenance_router, prefix="/push-token/maintenance", tags=["maintenance"])
api_router.include_router(push_tokens_router, prefix="/push-token", tags=["push-tokens"])
