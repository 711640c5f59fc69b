"""Endpoints de usuarios (``/api/users``)."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status

from ..deps import get_user_service
from ..schemas import LoginIn, SignupIn
from ..services import DuplicateEmailError, UserService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/users", tags=["users"])


@router.get("")
def list_users(service: UserService = Depends(get_user_service)):
    return service.get_all()


@router.get("/by-email")
def get_user_by_email(email: str = Query(...), service: UserService = Depends(get_user_service)):
    user = service.get_by_email(email)
    if user is None:
        raise HTTPException(status_code=404, detail={"message": "User not found"})
    return user


@router.post("/signup", status_code=status.HTTP_201_CREATED)
def signup(body: SignupIn, service: UserService = Depends(get_user_service)):
    if not body.email.strip() or not body.password:
        raise HTTPException(status_code=400, detail={"message": "Email and password are required"})
    try:
        return service.create(body.email, body.password, body.name, body.role)
    except DuplicateEmailError:
        raise HTTPException(status_code=400, detail={"message": "Email already registered"})


@router.post("/login")
def login(body: LoginIn, service: UserService = Depends(get_user_service)):
    user = service.authenticate(body.email, body.password)
    if user is None:
        logger.info("[USERS] Failed login for %s", body.email)
        raise HTTPException(status_code=401, detail={"message": "Invalid email or password"})
    return user


@router.get("/{user_id}")
def get_user(user_id: str, service: UserService = Depends(get_user_service)):
    user = service.get_by_id(user_id)
    if user is None:
        raise HTTPException(status_code=404, detail={"message": "User not found"})
    return user


@router.delete("/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_user(user_id: str, service: UserService = Depends(get_user_service)):
    if not service.delete(user_id):
        raise HTTPException(status_code=404, detail={"message": "User not found"})
    return Response(status_code=status.HTTP_204_NO_CONTENT)
