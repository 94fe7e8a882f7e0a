"""FastAPI application entrypoint."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import asyncpg
import socketio
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from bonfire.api import bonfires, messages, ops
from bonfire.api.errors import install_error_handlers
from bonfire.domain.messages.sockets import BonfiresNamespace, set_namespace
from bonfire.domain.rendezvous import secrets
from bonfire.infra import postgres
from bonfire.obs import init as obs_init
from bonfire.settings import settings

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
	# Without a master key no join code can be derived; refuse to start.
	secrets.master_key()
	try:
		await postgres.init_pool()
	except (OSError, asyncpg.PostgresError):
		logger.warning("postgres unavailable; bonfire state is process-local", exc_info=True)
	try:
		yield
	finally:
		await postgres.close_pool()


app = FastAPI(title="Bonfire Rendezvous", lifespan=lifespan)
install_error_handlers(app)

allow_origins = list(getattr(settings, "cors_allow_origins", []))
if not allow_origins:
	allow_origins = ["http://localhost:3000"] if settings.is_dev() else []

# Starlette disallows wildcard '*' with allow_credentials=True.
if "*" in allow_origins:
	allow_origins = ["http://localhost:3000", "http://127.0.0.1:3000"] if settings.is_dev() else []

app.add_middleware(
	CORSMiddleware,
	allow_origins=allow_origins,
	allow_credentials=True,
	allow_methods=["*"],
	allow_headers=["*"],
)

# Use the same allowed origins for Socket.IO as for the REST API
sio = socketio.AsyncServer(async_mode="asgi", cors_allowed_origins=allow_origins)
bonfires_namespace = BonfiresNamespace()
sio.register_namespace(bonfires_namespace)
set_namespace(bonfires_namespace)
socket_app = socketio.ASGIApp(sio, other_asgi_app=app)
obs_init(app)

app.include_router(bonfires.router)
app.include_router(messages.router)
app.include_router(ops.router)
