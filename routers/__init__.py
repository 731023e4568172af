# routers/__init__.py
from .students import router as students_router
from .concessions import router as concessions_router
from .transactions import router as transactions_router
from .refunds import router as refunds_router
from .checkins import router as checkins_router
from .merges import router as merges_router
from .maintenance import router as maintenance_router

all_routers = [
     students_router,
     concessions_router,
     transactions_router,
     refunds_router,
     checkins_router,
     merges_router,
     maintenance_router,
]

__all__ = ["all_routers"]
