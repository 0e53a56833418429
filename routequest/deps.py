from typing import Optional

from fastapi import Depends, HTTPException, Request
from sqlmodel import Session

from . import crud
from .errors import AuthorizationError


def get_session():
    # simple dependency that yields a session
    with Session(crud.engine) as session:
        yield session


def _token_from_request(request: Request) -> Optional[str]:
    auth = request.headers.get('authorization')
    if auth and auth.lower().startswith('bearer '):
        return auth.split(' ', 1)[1].strip() or None
    return request.cookies.get('player_token')


def optional_player(request: Request, session: Session = Depends(get_session)) -> Optional[int]:
    """Player id from a valid token, or None when absent/invalid."""
    token = _token_from_request(request)
    if not token:
        return None
    return crud.verify_player_token(session, token)


def current_player(request: Request, session: Session = Depends(get_session)) -> int:
    token = _token_from_request(request)
    if not token:
        raise HTTPException(status_code=401, detail='missing player token')
    pid = crud.verify_player_token(session, token)
    if pid is None:
        raise HTTPException(status_code=401, detail='invalid or expired token')
    return pid


def require_same_player(player_id: int, caller_id: int) -> None:
    """The identity in the token must match the player the request acts on."""
    if player_id != caller_id:
        raise AuthorizationError("Access denied", payload={"player_id": player_id})
