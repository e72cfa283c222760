import re
from pathlib import Path
from dotenv import load_dotenv
from datetime import datetime

# Load environment variables
load_dotenv()

# Coordinate grid used by the vision model (0-999 on both axes)
GRID_MAX = 999

# Recommended screen size for computer-use style models
DEFAULT_VIEWPORT_WIDTH = 1440
DEFAULT_VIEWPORT_HEIGHT = 900

# Step limits accepted by POST /jobs
DEFAULT_MAX_STEPS = 100
MIN_MAX_STEPS = 3
MAX_MAX_STEPS = 100

# Browser timeouts (milliseconds)
NAVIGATION_TIMEOUT_MS = 60_000
ACTION_TIMEOUT_MS = 30_000
SCREENSHOT_TIMEOUT_MS = 30_000
SETTLE_TIMEOUT_MS = 5_000
POST_ACTION_WAIT_MS = 300
SCREENSHOT_QUALITY = 80  # JPEG
SCROLL_AMOUNT_PX = 400
MAX_LINKS_PER_STEP = 50

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

CHECKOUT_PATTERN = re.compile(
    r"checkout|cart|carrello|pagamento|payment|order[\s_-]*summary|pay[\s_-]*now|billing",
    re.IGNORECASE,
)

# Deterministic crawl (no vision model)
CRAWL_DEFAULT_MAX_STEPS = 15
CRAWL_MAX_MAX_STEPS = 100
CRAWL_DEFAULT_MAX_DEPTH = 3
CRAWL_MAX_DEPTH = 10
CRAWL_VIEWPORT_WIDTH = 1280
CRAWL_VIEWPORT_HEIGHT = 720
CRAWL_NAVIGATION_TIMEOUT_MS = 120_000
CRAWL_SCREENSHOT_TIMEOUT_MS = 60_000
CONTENT_TEXT_LIMIT = 100_000
QUIZ_DEFAULT_MAX_STEPS = 20
QUIZ_MAX_MAX_STEPS = 35
QUIZ_STEP_WAIT_MS = 2_500
QUIZ_TRANSITION_MS = 1_500
QUIZ_STALL_LIMIT = 3

TRACKING_PATTERN = re.compile(
    r"facebook|google|analytics|pixel|track|doubleclick|hotjar|segment|gtm|tag_manager|clarity|mixpanel|amplitude",
    re.IGNORECASE,
)
CHECKOUT_REQUEST_PATTERN = re.compile(r"checkout|cart|pay|stripe|paypal|payment|order|purchase", re.IGNORECASE)
CTA_PATTERN = re.compile(r"btn|button|cta|submit|buy|order|get|start|join|sign|claim", re.IGNORECASE)
QUIZ_NEXT_PATTERN = (
    r"next|continue|avanti|continua|→|submit|get\s*(my|your)?\s*result|see\s*result|claim|start|inizia"
    r"|scopri|prossimo|ottieni|next\s*step|go|vai|proceed|siguiente|weiter|suivant|continuer|próximo|continuar"
)

# Scheduled jobs
SCHEDULE_RUN_HOUR_UTC = 6
DEFAULT_SCHEDULED_START_URL = "https://google.com"

# Directory Configuration
BASE_DIR = Path(__file__).parent.parent.parent
GENERATED_DIR = BASE_DIR / "generated"
LOGS_DIR = GENERATED_DIR / "logs"

# Ensure directories exist
GENERATED_DIR.mkdir(exist_ok=True)
LOGS_DIR.mkdir(exist_ok=True)

# Run timestamp
RUN_TIMESTAMP = datetime.now().strftime("%Y%m%d_%H%M%S")
