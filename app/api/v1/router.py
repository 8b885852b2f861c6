"""
Router principal de la API v1.
Agrupa todos los sub-routers de la versión 1.
"""

from fastapi import APIRouter

from app.api.v1.access import router as access_router
from app.api.v1.admin import router as admin_router
from app.api.v1.patient_access import router as patient_access_router
from app.api.v1.records import router as records_router

api_v1_router = APIRouter()

api_v1_router.include_router(access_router, prefix="/access", tags=["Acceso DMP (profesional)"])
api_v1_router.include_router(patient_access_router, prefix="/patient/access", tags=["Acceso DMP (paciente)"])
api_v1_router.include_router(records_router, prefix="/records", tags=["Dossier médico"])
api_v1_router.include_router(admin_router, prefix="/admin/access", tags=["Administración de accesos"])
