"""Player pool loading and price tiers for draft boards."""

import json
import logging
from pathlib import Path

import pandas as pd

from src.board_pipeline.config import (
    BOARD_POSITIONS,
    DEFAULT_SCORING_FORMAT,
    PRICE_TIER_BINS,
    PRICE_TIER_LABELS,
    REQUIRED_POOL_COLUMNS,
)

logger = logging.getLogger(__name__)


def load_player_pool(path: Path, scoring_format: str = DEFAULT_SCORING_FORMAT) -> pd.DataFrame:
    """Read a player pool into a ``Player, Team, Position, FPTS`` frame.

    Accepts a CSV with those columns, or the processed players JSON
    (``{"players": [{"name", "team", "position", "projections": {...}}]}``).
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Player pool not found: {path}")

    if path.suffix.lower() == ".csv":
        df = pd.read_csv(path)
    else:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        players = data.get("players", []) if isinstance(data, dict) else data
        df = pd.DataFrame(
            {
                "Player": [p.get("name") for p in players],
                "Team": [p.get("team") for p in players],
                "Position": [p.get("position") for p in players],
                "FPTS": [
                    (p.get("projections") or {}).get(scoring_format, 0.0) for p in players
                ],
            }
        )

    missing = REQUIRED_POOL_COLUMNS - set(df.columns)
    if missing:
        raise ValueError(f"Player pool {path} is missing columns: {sorted(missing)}")

    logger.info("Loaded %d players from %s", len(df), path)
    return df


class PriceTierer:
    """Assigns $1-$5 prices from projected points, ranked within position."""

    def assign_prices(self, pool: pd.DataFrame) -> pd.DataFrame:
        """Return board-eligible players with a ``Price`` column.

        Players are ranked by FPTS within their position; the top fifth of
        each position costs $5 and the bottom fifth $1.
        """
        missing = REQUIRED_POOL_COLUMNS - set(pool.columns)
        if missing:
            raise ValueError(f"Player pool is missing columns: {sorted(missing)}")

        df = pool[pool["Position"].isin(BOARD_POSITIONS)].copy()
        df = df.dropna(subset=["Player"])
        df["Team"] = df["Team"].fillna("FA")
        df["FPTS"] = pd.to_numeric(df["FPTS"], errors="coerce").fillna(0.0)
        if df.empty:
            logger.warning("No board-eligible players in pool of %d", len(pool))
            df["Price"] = pd.Series(dtype=int)
            return df.reset_index(drop=True)

        pct = df.groupby("Position")["FPTS"].rank(pct=True, method="first")
        df["Price"] = pd.cut(
            pct, bins=PRICE_TIER_BINS, labels=PRICE_TIER_LABELS, include_lowest=True
        ).astype(int)

        counts = df.groupby(["Position", "Price"]).size()
        logger.info("Priced %d players:\n%s", len(df), counts.unstack(fill_value=0))
        return df.reset_index(drop=True)
