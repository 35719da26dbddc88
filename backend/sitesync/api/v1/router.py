from fastapi import APIRouter

from sitesync.api.v1.endpoints import health, scheduler, sync

router = APIRouter(prefix='/api/v1')
router.include_router(health.router, tags=['health'])
router.include_router(scheduler.router, prefix='/scheduler', tags=['scheduler'])
router.include_router(sync.router, prefix='/sync', tags=['sync'])
