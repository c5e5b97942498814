"""
Deterministic normalization rules.

These caps bound memory and cost for every ingestion. They are fixed on purpose:
the same payload always yields the same table.
"""

# Parsing
MAX_ROWS = 20000
DISCOVERY_SAMPLE = 400
MAX_FEED_ITEMS = 2000
MAX_SCRAPE_ITEMS = 50
MAX_SCRAPE_RECORDS = 200
MAX_ANCHORS = 200
MAX_HTML_ROWS = 5000
MAX_TOPIC_TARGETS = 5

# Cell sentinels
EMPTY = ""
VALUE_COLUMN = "value"

# Transport
SNAPSHOT_SAMPLE = 2000
TABLE_ROWS = 500

# Chart planning
PLANNER_PREVIEW = 80
MAX_CHART_SPECS = 3
NUMERIC_SCAN_ROWS = 200
NUMERIC_MIN_ROWS = 5
NUMERIC_RATIO = 0.7

# Embedding
RANK_SAMPLE = 1200
MAX_EMBED_ROWS = 200
EMBED_DIMENSIONS = 768
EMBED_TEXT_CHARS = 512
ID_TEXT_CHARS = 128
TOP_K_MIN = 1
TOP_K_MAX = 25

PASTED_URL = "(pasted)"
PASTED_NAME = "pasted-data"
DEFAULT_SESSION = "singleton"
