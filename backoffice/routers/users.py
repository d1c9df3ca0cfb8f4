"""
Authentication and user administration endpoints.

Endpoints:
    POST /api/auth/register: Create an account and return a token
    POST /api/auth/login: Exchange credentials for a token
    GET /api/auth/me: Current user
    GET /api/users: List users (admin only)
    PATCH /api/users/{user_id}: Change role or active flag (admin only)
    DELETE /api/users/{user_id}: Delete a user (admin only)
"""
from typing import List
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from .. import auth, crud, models, schemas
from ..database import get_db

router = APIRouter(prefix="/api", tags=["users"])


@router.post("/auth/register", response_model=schemas.Token, status_code=status.HTTP_201_CREATED)
def register(user: schemas.UserRegister, db: Session = Depends(get_db)):
    """
    Register a new user account.

    The first account ever created is an ADMIN, later ones are CUSTOMERs.

    Raises:
        HTTPException: 409 if email already exists
    """
    if crud.get_user_by_email(db, email=user.email):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Email already registered")

    db_user = crud.create_user(db, user, password_hash=auth.get_password_hash(user.password))
    return schemas.Token(access_token=auth.token_for(db_user))


@router.post("/auth/login", response_model=schemas.Token)
def login(credentials: schemas.UserLogin, db: Session = Depends(get_db)):
    """
    Authenticate and login a user.

    Raises:
        HTTPException: 401 if credentials are invalid
    """
    user = auth.authenticate_user(db, credentials.email, credentials.password)
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect email or password",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return schemas.Token(access_token=auth.token_for(user))


@router.get("/auth/me", response_model=schemas.User)
def get_current_user_info(current_user: models.User = Depends(auth.get_current_user)):
    return current_user


@router.get("/users", response_model=List[schemas.User])
def list_users(
    skip: int = 0,
    limit: int = 500,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_admin)
):
    """
    List all users, newest first (admin only).

    Args:
        skip: Number of records to skip (default: 0)
        limit: Maximum number of records to return (default: 500)
    """
    return crud.get_users(db, skip=skip, limit=limit)


@router.patch("/users/{user_id}", response_model=schemas.User)
def update_user(
    user_id: int,
    user: schemas.UserUpdate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_admin)
):
    """
    Update a user's role or active flag (admin only).

    Raises:
        HTTPException: 400 if nothing to update
        HTTPException: 403 if an admin tries to change their own role or deactivate themselves
        HTTPException: 404 if user not found
    """
    changes = user.model_dump(exclude_unset=True)
    if not changes:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No fields to update")

    if current_user.id == user_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You cannot change your own role or status"
        )

    db_user = crud.update_user(db, user_id=user_id, user=user)
    if db_user is None:
        raise HTTPException(status_code=404, detail="User not found")
    return db_user


@router.delete("/users/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_user(
    user_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_admin)
):
    """
    Delete a user (admin only).

    Raises:
        HTTPException: 403 when deleting yourself
        HTTPException: 404 if user not found
    """
    if current_user.id == user_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="You cannot delete your own account")

    if not crud.delete_user(db, user_id=user_id):
        raise HTTPException(status_code=404, detail="User not found")
