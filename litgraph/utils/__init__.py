# Utils: cache
from litgraph.utils.cache import TTLCache

__all__ = ["TTLCache"]
