from src.board_pipeline.board_builder import BoardBuilder, make_board_factory
from src.board_pipeline.pricing import PriceTierer, load_player_pool

__all__ = [
    "BoardBuilder",
    "PriceTierer",
    "load_player_pool",
    "make_board_factory",
]
