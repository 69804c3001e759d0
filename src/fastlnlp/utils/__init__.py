# src/fastlnlp/utils/__init__.py
from .utils import (
    embed_series,
    get_td_embedding_np,
    target_rows,
)
__all__ = (
    "embed_series",
    "get_td_embedding_np",
    "target_rows",
)
