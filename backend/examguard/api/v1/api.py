from fastapi import APIRouter

from .endpoints import auth, users, exams, teacher_exams, health

api_router = APIRouter()

api_router.include_router(auth.router, prefix="/auth", tags=["authentication"])
api_router.include_router(users.router, prefix="/users", tags=["users"])
api_router.include_router(exams.router, prefix="/exams", tags=["exams"])
api_router.include_router(teacher_exams.router, prefix="/teacher", tags=["teacher"])
api_router.include_router(health.router, prefix="/health", tags=["health"])
