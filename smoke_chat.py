"""Manual smoke check against a running Neon Chat server.

Start the server (uvicorn app.main:app --app-dir backend --port 5000), then:

    python smoke_chat.py
"""
import asyncio
import json
import uuid

import httpx
import websockets

BASE_URL = "http://localhost:5000"
WS_URL = "ws://localhost:5000/ws"


def register(client: httpx.Client, username: str) -> str:
    response = client.post("/api/auth/register", json={
        "username": username,
        "password": "secret123",
        "age": 25,
        "gender": "prefer-not-to-say",
    })
    response.raise_for_status()
    return response.json()["token"]


async def smoke():
    suffix = uuid.uuid4().hex[:6]
    with httpx.Client(base_url=BASE_URL) as client:
        token = register(client, f"smoke_{suffix}")
        headers = {"Authorization": f"Bearer {token}"}
        room = client.post(
            "/api/chat/rooms",
            json={"name": f"Smoke {suffix}", "topic": "general"},
            headers=headers,
        ).json()["chatroom"]
        print(f"Room: {room['id']}")

    async with websockets.connect(WS_URL) as ws:
        await ws.send(json.dumps({"type": "authenticate", "token": token}))
        print(f"Auth: {await ws.recv()}")

        await ws.send(json.dumps({"type": "join_room", "roomId": room["id"]}))
        print(f"Joined: {await ws.recv()}")

        await ws.send(json.dumps({
            "type": "send_message",
            "roomId": room["id"],
            "content": "Hello from Python!",
        }))
        print(f"Received: {await ws.recv()}")
        print(f"Ack: {await ws.recv()}")


if __name__ == "__main__":
    asyncio.run(smoke())
