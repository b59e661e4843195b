"""Authentication endpoints for dispatch backend token management."""
from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from src.api.dependencies import get_auth_service, verify_api_key
from src.services.auth_service import AuthService

router = APIRouter(prefix="/api/auth", tags=["authentication"], dependencies=[Depends(verify_api_key)])

@router.get("/token/info")
async def get_token_info(auth_service: AuthService = Depends(get_auth_service)):
    """Get information about current backend token."""
    return JSONResponse({
        "status": "success",
        "data": auth_service.get_token_info()
    })

@router.post("/token/refresh")
async def refresh_token(auth_service: AuthService = Depends(get_auth_service)):
    """Force refresh the backend token."""
    if not auth_service.refresh_token():
        raise HTTPException(status_code=502, detail="Failed to refresh token")

    return JSONResponse({
        "status": "success",
        "message": "Token refreshed successfully",
        "data": auth_service.get_token_info()
    })

@router.get("/token/validate")
async def validate_token(auth_service: AuthService = Depends(get_auth_service)):
    """Validate current token and get a fresh one if needed."""
    token = auth_service.get_valid_token()

    if not token:
        raise HTTPException(status_code=401, detail="Could not obtain valid token")

    return JSONResponse({
        "status": "success",
        "message": "Token is valid",
        "data": auth_service.get_token_info()
    })
