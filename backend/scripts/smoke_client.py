"""Manual smoke test against a running server.

Usage:
    retrochat &                      # or: uvicorn retrochat.main:app --port 8080
    python backend/scripts/smoke_client.py ws://localhost:8080/ws
"""
import asyncio
import json
import sys

import websockets


async def smoke(url: str) -> None:
    async with websockets.connect(url) as ws:
        # Join, then the server replies with history, a join notice and the count
        await ws.send(json.dumps({"username": "smoke-test"}))
        for _ in range(3):
            print(f"Received: {await ws.recv()}")

        await ws.send(json.dumps({"message": "Hello from Python!"}))
        print(f"Broadcast: {await ws.recv()}")

        await ws.send(json.dumps({"message": "   "}))
        print(f"Rejected: {await ws.recv()}")


if __name__ == "__main__":
    asyncio.run(smoke(sys.argv[1] if len(sys.argv) > 1 else "ws://localhost:8080/ws"))
