import os
from functools import lru_cache
from pathlib import Path

from fastapi import Depends

from src.adapters.dev_notify import (
    LoggingCacheInvalidator,
    LoggingChangeNotifier,
    LoggingErrorReporter,
)
from src.adapters.sqlite.repos import SQLiteRedirectStore
from src.components.redirects import RedirectService, build_config
from src.rules.loader import load_rules
from src.rules.models import Rules


# --- Settings ---
class Settings:
    def __init__(self) -> None:
        self.base_dir = Path(os.getcwd())
        self.rules_path = Path(
            os.environ.get("REDIRECTS_RULES_PATH", str(self.base_dir / "rules.yaml"))
        )
        self.data_dir = os.environ.get("REDIRECTS_DATA_DIR")

    def db_path(self, rules: Rules) -> str:
        """Data dir from the environment wins over the rules file."""
        if self.data_dir:
            return str(Path(self.data_dir) / "redirects.db")
        return rules.storage.db_path


@lru_cache
def get_settings() -> Settings:
    return Settings()


# --- Rules ---
def get_rules(settings: Settings = Depends(get_settings)) -> Rules:
    return _load_rules_cached(settings.rules_path)


@lru_cache
def _load_rules_cached(path: Path) -> Rules:
    return load_rules(path)


# --- Collaborators ---
@lru_cache
def get_cache() -> LoggingCacheInvalidator:
    return LoggingCacheInvalidator()


@lru_cache
def get_notifier() -> LoggingChangeNotifier:
    return LoggingChangeNotifier()


@lru_cache
def get_error_reporter() -> LoggingErrorReporter:
    return LoggingErrorReporter()


# --- Store ---
def get_redirect_store(
    settings: Settings = Depends(get_settings),
    rules: Rules = Depends(get_rules),
) -> SQLiteRedirectStore:
    return SQLiteRedirectStore(settings.db_path(rules))


# --- Component Services ---
def get_redirect_service(
    store: SQLiteRedirectStore = Depends(get_redirect_store),
    rules: Rules = Depends(get_rules),
    cache: LoggingCacheInvalidator = Depends(get_cache),
    notifier: LoggingChangeNotifier = Depends(get_notifier),
    error_reporter: LoggingErrorReporter = Depends(get_error_reporter),
) -> RedirectService:
    """Get redirect component service."""
    return RedirectService(
        store=store,
        cache=cache,
        notifier=notifier,
        error_reporter=error_reporter,
        config=build_config(rules.redirects),
    )
