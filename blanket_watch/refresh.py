"""Weather refresh orchestration: in-flight guard, freshness window and timer."""

import threading
from datetime import datetime, timezone
from typing import Callable, Dict, Optional

import pandas as pd

from blanket_watch.log_util import app_logger
from blanket_watch.models import LastForecast, Metrics
from blanket_watch.store import BlanketStore
from blanket_watch.weather import WeatherError, fetch_tonight_metrics

logger = app_logger(__name__)

# Quiet refreshes are skipped while the last fetch is younger than the
# refresh interval minus this slack.
FRESHNESS_SLACK_S = 5


class WeatherRefresher:
    """
    Keeps tonight's metrics current for one barn.

    Only one refresh runs at a time; a call made while another is in flight
    returns immediately. The last good snapshot is persisted in the store and
    stays available when a later fetch fails.
    """

    def __init__(
        self,
        store: BlanketStore,
        config: Dict,
        fetcher: Optional[Callable] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.store = store
        self.config = config
        self.fetcher = fetcher or fetch_tonight_metrics
        self.clock = clock
        self.refresh_s = int(config.get("refresh_minutes", 30)) * 60

        self.metrics: Optional[Metrics] = None
        self.fetched_at_iso = ""
        self.timezone = ""
        self.window_df: Optional[pd.DataFrame] = None
        self.window_label = ""
        self.error = ""
        # Called with the refresher after every attempted (not skipped) refresh.
        self.on_update: Optional[Callable[["WeatherRefresher"], None]] = None

        self._lock = threading.Lock()
        self._timer: Optional[threading.Timer] = None
        self.hydrate()

    @property
    def loading(self) -> bool:
        return self._lock.locked()

    def hydrate(self):
        """Load the cached snapshot so the last known metrics show before any fetch."""
        last = self.store.data.last_forecast
        if last is None:
            return
        self.metrics = last.metrics
        self.fetched_at_iso = last.fetched_at_iso
        self.timezone = last.timezone

    def is_fresh(self) -> bool:
        if not self.fetched_at_iso:
            return False
        try:
            fetched = datetime.fromisoformat(self.fetched_at_iso)
        except ValueError:
            return False
        if fetched.tzinfo is None:
            fetched = fetched.replace(tzinfo=timezone.utc)
        age_s = (self.clock() - fetched).total_seconds()
        return age_s < self.refresh_s - FRESHNESS_SLACK_S

    def refresh(self, quiet_if_fresh: bool = False) -> bool:
        """
        Fetch and store tonight's metrics.

        Args:
            quiet_if_fresh (bool): Skip when the last fetch is still fresh

        Returns:
            bool: True when new metrics were fetched. False when the call was
            skipped (in flight or fresh) or failed; on failure self.error holds
            the message and the previous metrics are kept.
        """
        if not self._lock.acquire(blocking=False):
            logger.debug("Refresh already in flight; ignoring")
            return False
        try:
            if quiet_if_fresh and self.is_fresh():
                logger.debug("Snapshot from %s is fresh; skipping", self.fetched_at_iso)
                return False

            self.error = ""
            try:
                metrics, tz_used, window_df, label = self.fetcher(
                    self.config["lat"], self.config["lon"], self.config.get("timezone", "auto")
                )
            except WeatherError as e:
                self.error = str(e)
                logger.info("Weather refresh failed: %s", e)
                self._notify()
                return False

            self.metrics = metrics
            self.fetched_at_iso = self.clock().isoformat()
            self.timezone = tz_used
            self.window_df = window_df
            self.window_label = label
            self.store.set_last_forecast(LastForecast(
                fetched_at_iso=self.fetched_at_iso,
                timezone=tz_used,
                metrics=metrics,
            ))
            logger.info("Weather updated %s (tz: %s)", self.fetched_at_iso, tz_used)
            self._notify()
            return True
        finally:
            self._lock.release()

    def _notify(self):
        if self.on_update is not None:
            self.on_update(self)

    # ---- Periodic refresh ----
    def start_auto_refresh(self):
        """Run a quiet refresh every refresh interval until stopped."""
        self.stop_auto_refresh()
        self._schedule()

    def stop_auto_refresh(self):
        if self._timer is not None:
            self._timer.cancel()
        self._timer = None

    def _schedule(self):
        self._timer = threading.Timer(self.refresh_s, self._tick)
        self._timer.daemon = True
        self._timer.start()

    def _tick(self):
        try:
            self.refresh(quiet_if_fresh=True)
        finally:
            if self._timer is not None:
                self._schedule()
