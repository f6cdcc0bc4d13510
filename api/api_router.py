from fastapi                            import APIRouter
from .auth.auth                         import router as auth_router
from .amc.amc                           import router as amc_router
from .amc.admin_amc                     import router as admin_amc_router
from .bookings.bookings                 import router as bookings_router
from .bookings.admin_bookings           import router as admin_bookings_router


api_router = APIRouter(prefix="/api/v1")

api_router.include_router(auth_router)
api_router.include_router(amc_router)
api_router.include_router(admin_amc_router)
api_router.include_router(bookings_router)
api_router.include_router(admin_bookings_router)
