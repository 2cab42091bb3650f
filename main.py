from __future__ import annotations

import asyncio
import json
import os
import sys

from reflection_sync.data.models import FamiliarityLevel, ReflectionWindow
from reflection_sync.session.user_session import UserSession
from reflection_sync.stores.local_cache import SqliteFallbackCache
from reflection_sync.stores.remote_store import InMemoryRecordStore
from reflection_sync.utils.config import get_settings
from reflection_sync.utils.logger import get_logger, sanitize_log_data, setup_logging

logger = get_logger(__name__)


async def run(user_id: str) -> None:
    """Walk one user through onboarding against a process-local remote store."""
    settings = get_settings()
    cache = SqliteFallbackCache(settings.local_cache_path)
    session = UserSession(InMemoryRecordStore(), cache, app_id=settings.app_instance_id)
    try:
        session.start(user_id)
        outcome = await session.complete_onboarding(
            "Reader", ["Personal Growth"], FamiliarityLevel.NEW, ReflectionWindow.ANYTIME,
        )
        state = session.state
        logger.info(
            "session_snapshot",
            **sanitize_log_data({
                "user_id": state.user_id,
                "save_target": outcome.target.value,
                "just_completed_onboarding": state.just_completed_onboarding,
                "preferences": state.preferences.to_record() if state.preferences else None,
                "stats": state.stats.model_dump(by_alias=True),
            }),
        )
        print(json.dumps({"message": session.daily_message().text}, indent=2))
    finally:
        session.stop()
        cache.close()


def main() -> None:
    setup_logging()
    user_id = sys.argv[1] if len(sys.argv) > 1 else os.environ.get("REFLECTION_USER_ID", "local-user")
    asyncio.run(run(user_id))


if __name__ == "__main__":
    main()
