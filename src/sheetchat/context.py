"""
SheetChat - Application context.

Every piece of shared state lives on one AppContext that is created by the
app factory and handed to services explicitly. Two apps never share state.
"""

import logging
from dataclasses import dataclass, field

from sheetchat.config import Settings, get_settings
from sheetchat.core.checkpoint_logger import CheckpointLogger
from sheetchat.core.conversation import ConversationStore
from sheetchat.core.dedup import DeduplicationEngine
from sheetchat.core.llm import ModelClient
from sheetchat.core.query_engine import QueryEngine
from sheetchat.core.table_store import InMemoryTableStore
from sheetchat.core.tool_registry import PluginRegistry, build_default_registry

logger = logging.getLogger(__name__)


@dataclass
class AppContext:
    settings: Settings
    model: ModelClient
    store: InMemoryTableStore = field(default_factory=InMemoryTableStore)
    registry: PluginRegistry = field(default_factory=build_default_registry)
    conversations: ConversationStore = field(default_factory=ConversationStore)
    checkpoints: CheckpointLogger = field(default_factory=CheckpointLogger)
    engine: QueryEngine = field(init=False)
    dedup: DeduplicationEngine = field(init=False)

    def __post_init__(self):
        self.engine = QueryEngine(self.store, self.settings.query)
        self.dedup = DeduplicationEngine(self.store)

    @classmethod
    def build(cls, settings: Settings | None = None, model: ModelClient | None = None) -> "AppContext":
        """Default wiring: Gemini model client and in-memory stores."""
        settings = settings or get_settings()
        if model is None:
            from sheetchat.core.llm.gemini import GeminiModelClient

            model = GeminiModelClient(settings.gemini)
        logger.info(f"[context] Built app context (model={model.name}, env={settings.app_env})")
        return cls(settings=settings, model=model)
