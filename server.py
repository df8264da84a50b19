#!/usr/bin/env python3
"""
Sonic Voice Support Bot - API Server

Serves the bot session over HTTP and WebSocket. The client application
(microphone capture, audio playback, rendering) is hosted separately.

Usage:
    python server.py [--host HOST] [--port PORT]

Example:
    python server.py --host 0.0.0.0 --port 8000
"""

import argparse
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Request, Response, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from starlette.requests import HTTPConnection
from pydantic import BaseModel, Field
import uvicorn

from support_bot import __version__
from support_bot.server.config import BotConfig
from support_bot.server.session import BotSession, SUGGESTIONS
from support_bot.server.state_types import ErrorCode, TurnOutcome
from support_bot.server.tools import describe_tools
from support_bot.server.tts import DEFAULT_VOICE, VOICES


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    session: Optional[BotSession] = getattr(app.state, "bot_session", None)
    if session is not None:
        await session.close()
        app.state.bot_session = None


app = FastAPI(
    title="Sonic Voice Support API",
    description="Voice customer-support bot: transcription, tool-backed answers, speech and analytics",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # In production, specify your frontend domain
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


async def get_bot_session(connection: HTTPConnection) -> BotSession:
    """The process-wide bot session, built on first use."""
    state = connection.app.state
    session = getattr(state, "bot_session", None)
    if session is None:
        try:
            session = BotSession.from_config(BotConfig.from_env())
        except ValueError as e:
            print(f"[Server] ERROR: {e}")
            raise HTTPException(status_code=503, detail=f"Server configuration error: {e}")
        await session.start()
        state.bot_session = session
    return session


class TurnRequest(BaseModel):
    text: str = Field(..., min_length=1, description="What the user said")


class SpeakRequest(BaseModel):
    text: str = Field(..., min_length=1, description="Text to speak")
    voice: str = Field(DEFAULT_VOICE, description="One of the voices listed by /voices")


# HTTP status per transcription error; NO SPEECH is a normal result
_TRANSCRIBE_STATUS = {
    ErrorCode.TOO_SHORT: 422,
    ErrorCode.BAD_AUDIO: 422,
    ErrorCode.STT_FAILED: 502,
}


@app.get("/")
async def get_root():
    """Root endpoint with API information."""
    return {
        "name": "Sonic Voice Support API",
        "version": __version__,
        "status": "running",
        "endpoints": {
            "websocket": "/ws",
            "health": "/health",
            "analytics": "/analytics",
            "transcript": "/transcript",
            "suggestions": "/suggestions",
            "tools": "/tools",
            "turns": "/turns",
            "transcribe": "/transcribe",
            "speak": "/speak",
            "voices": "/voices",
            "docs": "/docs",
        },
    }


@app.get("/health")
async def health_check():
    """Health check endpoint for monitoring."""
    config = BotConfig.from_env()
    return {
        "status": "healthy",
        "service": "sonic-voice-support",
        "version": __version__,
        "deepgram_configured": bool(config.deepgram_api_key),
        "groq_configured": bool(config.groq_api_key),
        "groq_model": config.groq_model if config.groq_api_key else None,
    }


@app.get("/suggestions")
async def get_suggestions():
    return {"suggestions": SUGGESTIONS}


@app.get("/tools")
async def get_tools():
    return {"tools": describe_tools()}


@app.get("/voices")
async def get_voices():
    return {"voices": list(VOICES), "default": DEFAULT_VOICE}


@app.get("/status")
async def get_status(session: BotSession = Depends(get_bot_session)):
    return session.status()


@app.get("/analytics")
async def get_analytics(session: BotSession = Depends(get_bot_session)):
    return session.analytics.to_dict()


@app.get("/transcript")
async def get_transcript(session: BotSession = Depends(get_bot_session)):
    return {"messages": session.transcript.to_list()}


@app.post("/turns")
async def post_turn(turn: TurnRequest, session: BotSession = Depends(get_bot_session)):
    """Run a text turn (typed input or a suggestion)."""
    result = await session.run_text_turn(turn.text.strip())
    if result.outcome == TurnOutcome.REJECTED:
        raise HTTPException(status_code=409, detail="turn_in_progress")
    return result.to_dict()


@app.post("/transcribe")
async def transcribe_recording(request: Request, session: BotSession = Depends(get_bot_session)):
    """
    Transcribe an uploaded recording on its own (no bot turn).

    The request body is the raw audio; its Content-Type is passed on as the
    mime type. "No speech" is not an error: it comes back as empty text.
    """
    audio = await request.body()
    mime_type = request.headers.get("content-type") or "audio/webm"
    text, error = await session.transcribe(audio, mime_type)
    if error in _TRANSCRIBE_STATUS:
        raise HTTPException(status_code=_TRANSCRIBE_STATUS[error], detail=error.value)
    return {"text": text, "error": error.value if error else None}


@app.post("/speak")
async def speak_text(speak: SpeakRequest, session: BotSession = Depends(get_bot_session)):
    """Speak typed text with a chosen voice; returns MP3 audio."""
    if speak.voice not in VOICES:
        raise HTTPException(status_code=422, detail="unknown_voice")
    if not speak.text.strip():
        raise HTTPException(status_code=422, detail="empty_text")
    audio, error = await session.speak(speak.text.strip(), speak.voice)
    if error is not None:
        raise HTTPException(status_code=502, detail=error.value)
    return Response(content=audio, media_type="audio/mpeg")


@app.post("/playback/stop")
async def stop_playback(session: BotSession = Depends(get_bot_session)):
    session.pipeline.stop_playback()
    return session.status()


@app.post("/reset")
async def reset_conversation(session: BotSession = Depends(get_bot_session)):
    if not session.reset():
        raise HTTPException(status_code=409, detail="turn_in_progress")
    return {"status": "ok"}


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket, session: BotSession = Depends(get_bot_session)):
    """
    WebSocket endpoint for the voice client.

    Only one client drives the bot at a time.

    Protocol:
        Client sends:
            - {"type": "start_capture", "mime_type": "audio/webm"}
            - {"type": "audio_chunk", "audio": "<base64>"}
            - {"type": "stop_capture"}
            - {"type": "capture_error", "error": "NotAllowedError"}
            - {"type": "suggestion", "text": "..."}
            - {"type": "stop_playback"}
            - {"type": "client_playback_complete"}
            - {"type": "reset"}

        Server sends:
            - {"event": "connected", ...}
            - {"event": "state", "state": "...", "error": "..."}
            - {"event": "audio", "audio": "<base64>", "format": "mp3"}
            - {"event": "stop_playback"}
            - {"event": "turn", "outcome": "...", "reply": "...", ...}
    """
    await websocket.accept()

    if not session.attach_client(websocket):
        print("[Server] ⚠️ Refusing second client")
        await websocket.send_json({
            "event": "error",
            "message": "Another client is already connected",
        })
        await websocket.close()
        return

    try:
        print("[Server] Client connected")
        await websocket.send_json({
            "event": "connected",
            "message": "Connected to Sonic",
            **session.status(),
            "transcript": session.transcript.to_list(),
            "suggestions": SUGGESTIONS,
        })

        while True:
            data = await websocket.receive_json()
            print(f"[Server] Received event: {data.get('type')}")
            await session.handle_client_event(data)

    except WebSocketDisconnect:
        print("[Server] Client disconnected")

    finally:
        await session.detach_client()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Sonic Voice Support Server")
    parser.add_argument("--host", default="127.0.0.1", help="Host to bind to (default: 127.0.0.1)")
    parser.add_argument("--port", type=int, default=8000, help="Port to bind to (default: 8000)")
    parser.add_argument("--reload", action="store_true", help="Enable auto-reload for development")

    args = parser.parse_args()

    print("\n" + "=" * 60)
    print("🎙️  Sonic Voice Support API Server")
    print("=" * 60)
    print(f"Version: {__version__}")
    print(f"WebSocket URL: ws://{args.host}:{args.port}/ws")
    print(f"API Docs: http://{args.host}:{args.port}/docs")
    print("=" * 60 + "\n")

    uvicorn.run(
        "server:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level="info",
    )
