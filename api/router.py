from fastapi import APIRouter

from api.routes import auth, exercises, relations, verification

api_router = APIRouter()

api_router.include_router(auth.router, tags=["auth"], prefix="/auth")
api_router.include_router(exercises.router, tags=["exercises"], prefix="/exercises")
api_router.include_router(relations.router, tags=["relations"], prefix="/exercises")
api_router.include_router(verification.router, tags=["verification"], prefix="/verification")
