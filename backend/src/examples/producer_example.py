import asyncio
import os
import random

from client import RelayClient

async def main():
    uri = "ws://localhost:8000/socket"
    async with RelayClient(uri) as producer:
        producer.on(lambda msg: print("Server:", msg))
        producer.authenticate(os.environ.get("RELAY_PRODUCER_PASSWORD", "change-me"), device="sensor-1")
        await producer.wait_connected()
        for _ in range(5):
            producer.emit("sample", {"value": random.random(), "icon": "thermometer.png"})
            await asyncio.sleep(1)

if __name__ == "__main__":
    asyncio.run(main())
