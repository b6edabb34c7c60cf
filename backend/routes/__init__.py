from fastapi import APIRouter

from . import appointments, drivers, notifications, outgate, reports, sads, sms, tickets, users, vehicles

api_router = APIRouter()
api_router.include_router(tickets.router, tags=["tickets"])
api_router.include_router(sads.router, tags=["sads"])
api_router.include_router(outgate.router, tags=["outgate"])
api_router.include_router(appointments.router, tags=["appointments"])
api_router.include_router(drivers.router, tags=["drivers"])
api_router.include_router(users.router, tags=["users"])
api_router.include_router(vehicles.router, tags=["vehicles"])
api_router.include_router(reports.router, tags=["reports"])
api_router.include_router(notifications.router, tags=["notifications"])
api_router.include_router(sms.router, tags=["sms"])
