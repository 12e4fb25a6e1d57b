"""Application service container.

All stateful collaborators (store, repositories, auth, realtime core) are
built once per application instance and stored on ``app.state.services``.
Handlers reach them through :func:`get_services`; nothing is kept in module
globals.
"""
from dataclasses import dataclass
from typing import Optional

from fastapi import Request

from app.auth.service import AuthService, UserRepository
from app.auth.tokens import TokenService
from app.chat.manager import PresenceTable
from app.chat.realtime import RealtimeServer
from app.chat.repository import MessageRepository, RoomRepository
from app.config import AppSettings
from app.store.database import Database


@dataclass
class Services:
    settings: AppSettings
    db: Database
    auth: AuthService
    rooms: RoomRepository
    messages: MessageRepository
    realtime: RealtimeServer


def build_services(settings: AppSettings, db: Optional[Database] = None) -> Services:
    """Wire the repositories, auth module and realtime core together."""
    db = db or Database(settings.database.path)
    users = UserRepository(db)
    tokens = TokenService(settings.secrets.jwt.secret_key, settings.auth)
    auth = AuthService(users, tokens)
    rooms = RoomRepository(db)
    messages = MessageRepository(db, rooms, users, max_length=settings.messages.max_length)
    realtime = RealtimeServer(
        presence=PresenceTable(),
        auth=auth,
        rooms=rooms,
        messages=messages,
    )
    return Services(
        settings=settings,
        db=db,
        auth=auth,
        rooms=rooms,
        messages=messages,
        realtime=realtime,
    )


def get_services(request: Request) -> Services:
    return request.app.state.services
