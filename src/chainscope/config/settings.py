import os
from dotenv import load_dotenv
load_dotenv()
# ---- Etherscan (v2 multichain) ----
ETHERSCAN_API_KEY = os.environ.get("ETHERSCAN_API_KEY")
ETHERSCAN_BASE_URL = "https://api.etherscan.io/v2/api"

ETHERSCAN_REQUESTS_PER_SEC = float(os.environ.get("ETHERSCAN_REQUESTS_PER_SEC", "4.0"))
ETHERSCAN_TIMEOUT_SEC = 15
ETHERSCAN_MAX_RETRIES = 5
ETHERSCAN_PAGE_SIZE = 1000
ETHERSCAN_MAX_PAGES = int(os.environ.get("ETHERSCAN_MAX_PAGES", "10"))

# Network name -> etherscan chainid. Upper-case keys.
NETWORK_CHAIN_IDS = {
    "ETH": 1,
    "BSC": 56,
    "POLYGON": 137,
    "ARBITRUM": 42161,
    "OPTIMISM": 10,
    "BASE": 8453,
    "AVALANCHE": 43114,
}
DEFAULT_NETWORK = os.environ.get("CHAINSCOPE_NETWORK", "ETH")

# ---- Trace crawler ----
# batches run sequentially with a delay between them (provider backpressure)
CRAWL_BATCH_SIZE = int(os.environ.get("CHAINSCOPE_CRAWL_BATCH_SIZE", "5"))
CRAWL_BATCH_DELAY_SEC = float(os.environ.get("CHAINSCOPE_CRAWL_BATCH_DELAY_SEC", "0.5"))

# ---- Topology ----
GROUP_THRESHOLD = 3                            # clusters must be strictly larger to get a color
GOLDEN_RATIO_CONJUGATE = 0.618033988749895
DEFAULT_GROUP_COLORS = {
    "light": "#334155",
    "dark": "#94a3b8",
}

RADIUS_RANGE = (20.0, 80.0)
RADIUS_DOMAIN_FALLBACK = (0.001, 1.0)

# Substring heuristics for node typing when no label is known. Lowercase.
EXCHANGE_HINTS = ("binance", "kraken")
CONTRACT_HINTS = ("bridge", "safe")

# ---- Logging ----
LOG_LEVEL = os.environ.get("CHAINSCOPE_LOG_LEVEL", "WARNING")
