import asyncio

from client import RelayClient

async def main():
    uri = "ws://localhost:8000/ws"
    async with RelayClient(uri) as client:
        client.on(lambda msg: print("Received:", msg))
        client.subscribe(["room1", "room2"])
        # subscriptions are replayed automatically if the server restarts
        print("Awaiting messages... (press Ctrl+C to exit)")
        try:
            while True:
                await asyncio.sleep(3600)
        except asyncio.CancelledError:
            client.unsubscribe_all()
            print("Unsubscribed.")

if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
