import asyncio
import uuid

from client import RelayClient

async def main():
    uri = "ws://localhost:8000/ws"
    async with RelayClient(uri) as client:
        await client.wait_connected()
        # broadcast a test message to channel 'room1'
        msg = {"id": str(uuid.uuid4()), "payload": {"order_id": "ORD-1", "amount": 9.99}}
        print("Client Message: ", msg)
        client.broadcast(msg, "room1")

        client.state_add("cfg", {"theme": "dark"})
        state = await client.state_get("cfg")
        print("Server state:", state)

if __name__ == "__main__":
    asyncio.run(main())
