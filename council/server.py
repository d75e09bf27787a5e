"""Thin HTTP surface over the driver, the discussion protocols and the room store.

    uvicorn council.server:create_default_app --factory --port 3000
"""

import logging
from contextlib import asynccontextmanager
from dataclasses import asdict
from typing import Any

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from config.config_loader import AppConfig, load_config
from council.browser.driver import InteractionDriver, create_driver
from council.discussion import roles_from_config, run_discussion
from council.parallel import run_parallel_discussion
from council.persistence import record_agent_urls, record_message
from council.store import RoomStore

logger = logging.getLogger(__name__)


class ChatRequest(BaseModel):
    message: str = ""
    account: str = "0"
    room_id: str | None = None


class NewChatRequest(BaseModel):
    account: str = "0"


class DiscussRequest(BaseModel):
    question: str = ""
    rounds: int = 1
    fresh_start: bool = True
    room_id: str | None = None


class ParallelDiscussRequest(BaseModel):
    question: str = ""
    fresh_start: bool = False
    room_id: str | None = None


class RoomRequest(BaseModel):
    name: str | None = None


def _driver(request: Request) -> InteractionDriver:
    return request.app.state.driver


def _store(request: Request) -> RoomStore:
    return request.app.state.store


def _require_room(store: RoomStore, room_id: str | None) -> None:
    if room_id is not None and store.get_room(room_id) is None:
        raise HTTPException(status_code=404, detail=f"Room not found: {room_id}")


def create_app(
    config: AppConfig,
    driver: InteractionDriver | None = None,
    store: RoomStore | None = None,
) -> FastAPI:
    driver = driver or create_driver(config)
    store = store or RoomStore(config.storage.db_path)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        logger.info("Shutting down...")
        await driver.registry.close()
        store.close()

    app = FastAPI(title="Gemini Council", lifespan=lifespan)
    app.add_middleware(CORSMiddleware, allow_origins=["*"], allow_methods=["*"], allow_headers=["*"])
    app.state.config = config
    app.state.driver = driver
    app.state.store = store

    @app.get("/health")
    async def health(request: Request) -> dict[str, Any]:
        registry = _driver(request).registry
        try:
            await registry.connect()
        except Exception as exc:
            return {
                "status": "error",
                "error": str(exc),
                "available_accounts": registry.available_accounts(),
            }
        return {
            "status": "ok",
            "connected": registry.is_connected,
            "active_accounts": registry.list_active_agents(),
            "available_accounts": registry.available_accounts(),
        }

    @app.get("/accounts")
    async def accounts(request: Request) -> dict[str, Any]:
        registry = _driver(request).registry
        return {"available": registry.available_accounts(), "active": registry.list_active_agents()}

    @app.post("/chat")
    async def chat(body: ChatRequest, request: Request) -> dict[str, Any]:
        if not body.message.strip():
            raise HTTPException(status_code=400, detail="Message is required")
        driver = _driver(request)
        store = _store(request)
        _require_room(store, body.room_id)

        record_message(store, body.room_id, "user", body.message, body.account)
        try:
            result = await driver.send(body.account, body.message)
        except Exception as exc:
            logger.error("Chat failed for account %s: %s", body.account, exc)
            raise HTTPException(status_code=500, detail=str(exc)) from exc
        record_message(store, body.room_id, body.account, result.response)
        await record_agent_urls(store, body.room_id, driver, [body.account])

        return {
            "success": True,
            "account": body.account,
            "message": body.message,
            "response": result.response,
            "duration_sec": result.duration_sec,
        }

    @app.post("/new-chat")
    async def new_chat(body: NewChatRequest, request: Request) -> dict[str, Any]:
        try:
            await _driver(request).start_new_chat(body.account)
        except Exception as exc:
            logger.error("New chat failed for account %s: %s", body.account, exc)
            raise HTTPException(status_code=500, detail=str(exc)) from exc
        return {"success": True, "message": "New chat started", "account": body.account}

    @app.post("/discuss")
    async def discuss(body: DiscussRequest, request: Request) -> dict[str, Any]:
        cfg: AppConfig = request.app.state.config
        if not body.question.strip():
            raise HTTPException(status_code=400, detail="Question is required")
        if not 1 <= body.rounds <= cfg.discussion.max_rounds:
            raise HTTPException(
                status_code=400,
                detail=f"rounds must be between 1 and {cfg.discussion.max_rounds}",
            )
        store = _store(request)
        _require_room(store, body.room_id)

        result = await run_discussion(
            question=body.question,
            channel=_driver(request),
            roles=roles_from_config(cfg.discussion),
            prompts=cfg.prompts,
            num_rounds=body.rounds,
            fresh_start=body.fresh_start,
            store=store,
            room_id=body.room_id,
        )
        return {
            "success": True,
            "question": result.question,
            "rounds": result.rounds,
            "discussion": [asdict(t) for t in result.turns],
            "final_answer": result.final_answer,
            "summary": result.summary,
            "duration_sec": result.total_duration_sec,
            "room_id": result.room_id,
        }

    @app.post("/discuss-v2")
    async def discuss_v2(body: ParallelDiscussRequest, request: Request) -> dict[str, Any]:
        cfg: AppConfig = request.app.state.config
        if not body.question.strip():
            raise HTTPException(status_code=400, detail="Question is required")
        store = _store(request)
        _require_room(store, body.room_id)

        result = await run_parallel_discussion(
            question=body.question,
            channel=_driver(request),
            config=cfg.discussion.parallel,
            prompts=cfg.prompts,
            fresh_start=body.fresh_start,
            store=store,
            room_id=body.room_id,
        )
        payload = asdict(result)
        payload["success"] = True
        return payload

    @app.post("/rooms")
    async def create_room(body: RoomRequest, request: Request) -> dict[str, Any]:
        return _store(request).create_room(body.name)

    @app.get("/rooms")
    async def list_rooms(request: Request) -> list[dict[str, Any]]:
        return _store(request).get_rooms()

    @app.get("/rooms/{room_id}")
    async def get_room(room_id: str, request: Request) -> dict[str, Any]:
        room = _store(request).get_room_with_details(room_id)
        if room is None:
            raise HTTPException(status_code=404, detail=f"Room not found: {room_id}")
        return room

    @app.delete("/rooms/{room_id}")
    async def delete_room(room_id: str, request: Request) -> dict[str, Any]:
        if not _store(request).delete_room(room_id):
            raise HTTPException(status_code=404, detail=f"Room not found: {room_id}")
        return {"success": True, "room_id": room_id}

    @app.post("/rooms/{room_id}/restore")
    async def restore_room(room_id: str, request: Request) -> dict[str, Any]:
        """Reopen every saved agent conversation of the room in its account's tab."""
        store = _store(request)
        _require_room(store, room_id)
        registry = _driver(request).registry
        restored: list[str] = []
        failed: dict[str, str] = {}
        for conv in store.get_agent_conversations(room_id):
            if not conv.get("gemini_url"):
                continue
            try:
                await registry.navigate_to_conversation(conv["agent_id"], conv["gemini_url"])
                restored.append(conv["agent_id"])
            except Exception as exc:
                logger.warning("Could not restore agent %s: %s", conv["agent_id"], exc)
                failed[conv["agent_id"]] = str(exc)
        return {"success": not failed, "restored": restored, "failed": failed}

    return app


def create_default_app() -> FastAPI:
    """uvicorn factory: load settings.yaml and build the app."""
    return create_app(load_config())
