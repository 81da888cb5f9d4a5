# ------------ Config ------------
CONNECTION_QUEUE_SIZE = 256   # bounded per-connection outbound queue
HEARTBEAT_INTERVAL = 30       # seconds between liveness probes
PRODUCER_PASSWORD = "change-me"
SYNC_FIELD = "icon"           # producer payload field delivered once per receiver
UNKNOWN_DEVICE = "unknown"
RECONNECT_DELAY = 1.0         # client: seconds before reconnecting
RECONNECT_BACKOFF = 1.0       # client: delay multiplier, 1.0 keeps it fixed
RECONNECT_MAX_DELAY = 30.0
LOG_LEVEL = "INFO"
HOST = "0.0.0.0"
PORT = 8000

# endpoints
RELAY_ENDPOINT = "relay"
PRODUCER_ENDPOINT = "producer"

# role-gated producer event kinds
PRODUCER_EVENTS = ("sample", "aggregate", "screenshot")
# --------------------------------
