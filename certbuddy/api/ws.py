#!/usr/bin/env python3
#
# certbuddy/api/ws.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Realtime endpoint: ``/ws?token=<bearer token>``."""

from __future__ import annotations

from fastapi import APIRouter, WebSocket

router = APIRouter(tags=["realtime"])


@router.websocket("/ws")
async def realtime(websocket: WebSocket):
	await websocket.app.state.notifier.serve(websocket)
