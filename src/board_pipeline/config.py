from pathlib import Path

# Base project directory
PROJECT_ROOT = Path(__file__).parent.parent.parent

# Data directories
DATA_DIR = PROJECT_ROOT / "data"
PROCESSED_DATA_DIR = DATA_DIR / "processed"
DEFAULT_POOL_FILE = PROCESSED_DATA_DIR / "players_latest.json"

# Board layout: one row per price, top row most expensive
BOARD_PRICES = [5, 4, 3, 2, 1]
BOARD_POSITIONS = ["QB", "RB", "WR", "TE"]
FLEX_POSITIONS = ["RB", "WR", "TE"]
TOP_ROW_FLEX_POSITIONS = ["RB", "WR"]
STACK_POSITION = "WR"

# Percentile-rank bins per position; the top bin is priced $5
PRICE_TIER_BINS = [0.0, 0.2, 0.4, 0.6, 0.8, 1.0]
PRICE_TIER_LABELS = [1, 2, 3, 4, 5]

# Pool columns the pricing step needs
REQUIRED_POOL_COLUMNS = {"Player", "Team", "Position", "FPTS"}

# Which projection drives pricing when reading processed player JSON
DEFAULT_SCORING_FORMAT = "half_ppr"
