"""Draft board layout - a 6x5 grid of priced players drawn from the pool."""

import logging
import random
from typing import Callable, Dict, List, Optional, Tuple

import pandas as pd

from src.board_pipeline.config import (
    BOARD_POSITIONS,
    BOARD_PRICES,
    FLEX_POSITIONS,
    STACK_POSITION,
    TOP_ROW_FLEX_POSITIONS,
)
from src.board_pipeline.pricing import PriceTierer

logger = logging.getLogger(__name__)

Cell = Optional[Dict]
Board = List[List[Cell]]


class BoardBuilder:
    """Lays out draft boards from a priced player frame.

    Rows 0-4 hold one QB, RB, WR and TE at that row's price plus a FLEX
    cell (RB/WR only in the $5 row). Row 5 is the wildcard row: a QB shown
    as FLEX, three RB/WR/TE at random prices, and a WR stacked with one of
    the board's QBs in the bottom-right corner. No player appears twice.
    """

    def __init__(self, rng: Optional[random.Random] = None):
        self.rng = rng or random.Random()

    def build(self, priced: pd.DataFrame) -> Board:
        pools = self._group(priced)
        board: Board = []

        for row_index, price in enumerate(BOARD_PRICES):
            row = [self._draw(pools, position, price, position) for position in BOARD_POSITIONS]
            flex_choices = TOP_ROW_FLEX_POSITIONS if row_index == 0 else FLEX_POSITIONS
            row.append(self._draw(pools, self.rng.choice(flex_choices), price, "FLEX"))
            board.append(row)

        wildcard = [self._draw(pools, "QB", self.rng.choice(BOARD_PRICES), "FLEX")]
        for _ in range(3):
            position = self.rng.choice(FLEX_POSITIONS)
            wildcard.append(self._draw(pools, position, self.rng.choice(BOARD_PRICES), "FLEX"))
        wildcard.append(None)
        board.append(wildcard)

        self._ensure_flex_rb(pools, board)
        board[-1][-1] = self._stacked_receiver(pools, board)

        filled = sum(1 for row in board for cell in row if cell is not None)
        logger.info("Built %dx%d board (%d players)", len(board), len(board[0]), filled)
        return board

    # ------------------------------------------------------------------
    # Pools
    # ------------------------------------------------------------------

    @staticmethod
    def _group(priced: pd.DataFrame) -> Dict[Tuple[str, int], List[Dict]]:
        pools: Dict[Tuple[str, int], List[Dict]] = {}
        for (position, price), group in priced.groupby(["Position", "Price"]):
            pools[(position, int(price))] = group[["Player", "Team", "Position"]].to_dict("records")
        return pools

    def _draw(self, pools, position: str, price: int, display: str) -> Cell:
        pool = pools.get((position, price))
        if not pool:
            logger.warning("No %s players at $%d left for the board", position, price)
            return None
        record = pool.pop(self.rng.randrange(len(pool)))
        return _cell(record, display, price)

    # ------------------------------------------------------------------
    # Layout fixes
    # ------------------------------------------------------------------

    def _ensure_flex_rb(self, pools, board: Board):
        spots = [(row, 4) for row in range(len(BOARD_PRICES)) if board[row][4]]
        spots += [(len(BOARD_PRICES), col) for col in range(1, 4) if board[-1][col]]
        if not spots or any(board[r][c]["original_position"] == "RB" for r, c in spots):
            return
        row, col = self.rng.choice(spots)
        replacement = self._draw(pools, "RB", board[row][col]["price"], "FLEX")
        if replacement is not None:
            board[row][col] = replacement

    def _stacked_receiver(self, pools, board: Board) -> Cell:
        qb_teams = {
            cell["team"]
            for row in board
            for cell in row
            if cell is not None and cell["original_position"] == "QB"
        }
        stackable = [
            (key, i)
            for key, records in pools.items()
            if key[0] == STACK_POSITION
            for i, record in enumerate(records)
            if record["Team"] in qb_teams
        ]
        if stackable:
            (position, price), index = self.rng.choice(stackable)
            record = pools[(position, price)].pop(index)
            return _cell(record, "FLEX", price)
        logger.info("No stackable %s for board QBs; using a $1 %s", STACK_POSITION, STACK_POSITION)
        return self._draw(pools, STACK_POSITION, 1, "FLEX")


def _cell(record: Dict, display: str, price: int) -> Dict:
    return {
        "name": record["Player"],
        "team": record["Team"],
        "position": display,
        "original_position": record["Position"],
        "price": int(price),
        "drafted": False,
        "drafted_by": None,
    }


def make_board_factory(pool: pd.DataFrame, rng: Optional[random.Random] = None) -> Callable[[], Board]:
    """Price ``pool`` once and return a callable building a fresh board each call."""
    priced = PriceTierer().assign_prices(pool)
    builder = BoardBuilder(rng)

    def factory() -> Board:
        return builder.build(priced)

    return factory
