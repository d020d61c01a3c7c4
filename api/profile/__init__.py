"""Profile endpoints."""

from fastapi import APIRouter, Security

from auth import get_current_user
from models import User

router = APIRouter(
    prefix="/me",
    tags=["Profile"]
)


@router.get("", response_model=User)
async def get_profile(user: User = Security(get_current_user)):
    """Get the authenticated user."""
    return user


# Export the router
__all__ = ['router']
