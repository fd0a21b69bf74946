import logging
from typing import Optional

from beanie import PydanticObjectId
from fastapi import APIRouter, Depends, HTTPException, status
from pymongo.errors import DuplicateKeyError

from cache import rate_limit
from envelope import success_response
from models import User, utcnow
from schemas import LoginRequest, ProfileUpdateRequest, RegisterRequest, serialize_user
from security import create_access_token, get_current_user, hash_password, verify_password

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/auth", tags=["Auth"], dependencies=[Depends(rate_limit)]
)


async def _identity_taken(
    username: Optional[str] = None,
    email: Optional[str] = None,
    exclude: Optional[PydanticObjectId] = None,
) -> bool:
    clauses = []
    if username:
        clauses.append({"username": username})
    if email:
        clauses.append({"email": email})
    if not clauses:
        return False
    query = {"$or": clauses}
    if exclude is not None:
        query["_id"] = {"$ne": exclude}
    return await User.find_one(query) is not None


@router.post("/register", status_code=status.HTTP_201_CREATED)
async def register(payload: RegisterRequest):
    if await _identity_taken(payload.username, payload.email):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="User already exists with this email or username",
        )

    user = User(
        username=payload.username,
        email=payload.email,
        password=hash_password(payload.password),
        last_login=utcnow(),
    )
    try:
        await user.insert()
    except DuplicateKeyError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="User already exists with this email or username",
        )

    logger.info("User registered", extra={"user_id": str(user.id)})
    return success_response(
        {"user": serialize_user(user), "token": create_access_token(str(user.id))},
        message="User registered successfully",
        status_code=status.HTTP_201_CREATED,
    )


@router.post("/login")
async def login(payload: LoginRequest):
    user = await User.find_one(User.email == payload.email)
    if user is None or not user.is_active or not verify_password(
        payload.password, user.password
    ):
        logger.info("Failed login attempt")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid credentials"
        )

    await user.set({User.last_login: utcnow()})
    logger.info("User logged in", extra={"user_id": str(user.id)})
    return success_response(
        {"user": serialize_user(user), "token": create_access_token(str(user.id))},
        message="Login successful",
    )


@router.get("/me")
async def me(user: User = Depends(get_current_user)):
    return success_response({"user": serialize_user(user)})


@router.put("/profile")
async def update_profile(
    payload: ProfileUpdateRequest, user: User = Depends(get_current_user)
):
    changes = {
        name: value
        for name, value in payload.model_dump(exclude_unset=True).items()
        if value is not None
    }
    if await _identity_taken(changes.get("username"), changes.get("email"), exclude=user.id):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Username or email is already in use",
        )
    if changes:
        changes["updated_at"] = utcnow()
        await user.set(changes)

    logger.info("Profile updated", extra={"user_id": str(user.id)})
    return success_response(
        {"user": serialize_user(user)}, message="Profile updated successfully"
    )
