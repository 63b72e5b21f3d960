from .api import EnhancedCrawler as EnhancedCrawler
from .api import FetchBrain as FetchBrain
from .api import create_fetchbrain as create_fetchbrain
from .api import enhance as enhance
from .api import enhance_handler as enhance_handler
from .circuit_breaker import CircuitBreaker as CircuitBreaker
from .circuit_breaker import CircuitState as CircuitState
from .client import KnowledgeClient as KnowledgeClient
from .config import FetchBrainConfig as FetchBrainConfig
from .context import RequestScope as RequestScope
from .context import get_current_scope as get_current_scope
from .core import Batcher as Batcher
from .hooks import push_data as push_data
from .models import AIMemoryDepth as AIMemoryDepth
from .models import IntelligenceLevel as IntelligenceLevel
from .models import KnowledgeResult as KnowledgeResult
from .models import StatsResponse as StatsResponse
from .models import TeachResponse as TeachResponse

__all__ = [
    "FetchBrain",
    "FetchBrainConfig",
    "EnhancedCrawler",
    "enhance",
    "enhance_handler",
    "create_fetchbrain",
    "push_data",
    "KnowledgeClient",
    "Batcher",
    "CircuitBreaker",
    "CircuitState",
    "RequestScope",
    "get_current_scope",
    "IntelligenceLevel",
    "AIMemoryDepth",
    "KnowledgeResult",
    "TeachResponse",
    "StatsResponse",
]
