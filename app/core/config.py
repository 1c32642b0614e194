import os
from decimal import Decimal

# Database Configuration
# Local default is a file-backed SQLite database; point at Postgres in deployment
DB_URL = os.getenv("DATABASE_URL", "sqlite://db.sqlite3")

# Application Metadata
PROJECT_NAME = "Tool Rental Booking Engine"
VERSION = "1.0.0"

# Booking hold settings
HOLD_TIMEOUT_MINUTES = int(os.getenv("HOLD_TIMEOUT_MINUTES", 30)) # Pending bookings lapse after N minutes
REAPER_INTERVAL = int(os.getenv("REAPER_INTERVAL", 30)) # Expired holds are swept every N seconds

# Outbox Poller Configuration
POLLING_INTERVAL = int(os.getenv("POLLING_INTERVAL", 1)) # Poller checks for new events every N seconds
MAX_ATTEMPTS = int(os.getenv("MAX_ATTEMPTS", 5)) # Max retries for an event
BATCH_SIZE = int(os.getenv("BATCH_SIZE", 50)) # How many events to fetch per poll

# Billing contract points (rates are owned by the external tax/payment processes)
TAX_RATE = Decimal(os.getenv("TAX_RATE", "0"))
DEPOSIT_RATE = Decimal(os.getenv("DEPOSIT_RATE", "0"))
PRICE_QUANTUM = Decimal(os.getenv("PRICE_QUANTUM", "0.01")) # Smallest currency unit

# Inventory
LOW_STOCK_THRESHOLD = int(os.getenv("LOW_STOCK_THRESHOLD", 2))

ENABLE_BACKGROUND_WORKERS = os.getenv("ENABLE_BACKGROUND_WORKERS", "true").lower() in ("1", "true", "yes")
