"""Constants for the daemon API proxy."""

# Chain constants
TARGET_BLOCK_TIME = 30  # Target block time: 30 seconds

# Upstream defaults
DEFAULT_HOST = "public.turtlenode.io"
DEFAULT_PORT = 11898
DEFAULT_TIMEOUT = 5.0  # Per upstream call, seconds

# Seed nodes queried for the network-wide aggregates
BACKUP_SEEDS = [
    {"host": "nyc.turtlenode.io", "port": 11898},
    {"host": "sfo.turtlenode.io", "port": 11898},
    {"host": "ams.turtlenode.io", "port": 11898},
    {"host": "sin.turtlenode.io", "port": 11898},
    {"host": "daemon.turtle.link", "port": 11898},
]

# Mining pools
POOL_LIST_URL = "https://raw.githubusercontent.com/turtlecoin/turtlecoin-pools-json/master/turtlecoin-pools.json"
POOL_REFRESH_INTERVAL = 3600  # Pool list refresh: 1 hour

# Cache constants
CACHE_TTL = 30  # Default TTL for proxied responses: 30 seconds

# Local replicated store
MAX_DEVIANCE = 5  # Blocks the local store may trail the network
LOCAL_STORE_TIMEOUT = 20.0  # Per local query, seconds
BLOCK_LIST_SIZE = 30  # Blocks returned by f_blocks_list_json

# Pseudo-hosts used to address the aggregates in cache keys and node descriptors
NETWORK_HOST = "network"
POOL_HOST = "pool"
