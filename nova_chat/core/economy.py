"""EconomyGate: daily point balance with atomic check-then-deduct."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from datetime import date

from .store import KeyValueStore
from ..storage.helpers import economy_from_dict, economy_to_dict
from ..types import ChatSettings, EconomyConfig, EconomyState

logger = logging.getLogger(__name__)

ECONOMY_KEY = "economy"


class EconomyGate:
    """Point balance, restored to the daily allotment on the first access of a new day.

    ``clock`` returns the current local date; tests inject a fixed one.
    """

    def __init__(
        self,
        store: KeyValueStore,
        config: EconomyConfig | None = None,
        clock: Callable[[], date] = date.today,
    ) -> None:
        self.store = store
        self.config = config or EconomyConfig()
        self.clock = clock
        self._lock = threading.Lock()
        state = economy_from_dict(store.get(ECONOMY_KEY))
        if state is None:
            state = EconomyState(
                balance=self.config.daily_allotment,
                last_reset_day=self._today(),
            )
            self._persist(state)
        self._state = state

    def _today(self) -> str:
        return self.clock().isoformat()

    def _persist(self, state: EconomyState) -> None:
        self.store.set(ECONOMY_KEY, economy_to_dict(state))

    def _maybe_reset(self) -> None:
        """Caller holds ``self._lock``."""
        today = self._today()
        if self._state.last_reset_day != today:
            logger.info(
                "Daily reset: balance %d -> %d", self._state.balance, self.config.daily_allotment,
            )
            self._state = EconomyState(balance=self.config.daily_allotment, last_reset_day=today)
            self._persist(self._state)

    def command_cost(self, prompt: str) -> int | None:
        """Flat cost of the command *prompt* starts with, or None."""
        lowered = prompt.strip().lower()
        for prefix, cost in self.config.command_costs.items():
            if lowered.startswith(prefix.lower()):
                return cost
        return None

    def cost(self, prompt: str, settings: ChatSettings) -> int:
        """Commands carry a flat cost; otherwise enabled mode surcharges add up."""
        flat = self.command_cost(prompt)
        if flat is not None:
            return flat
        total = 0
        if settings.deep_thinking:
            total += self.config.deep_thinking_cost
        if settings.scientific_mode:
            total += self.config.scientific_mode_cost
        return total

    def try_deduct(self, amount: int) -> bool:
        if amount < 0:
            raise ValueError("amount must be >= 0")
        with self._lock:
            self._maybe_reset()
            if self._state.balance < amount:
                logger.debug("Deduct %d refused, balance %d", amount, self._state.balance)
                return False
            if amount:
                self._state = EconomyState(
                    balance=self._state.balance - amount,
                    last_reset_day=self._state.last_reset_day,
                )
                self._persist(self._state)
            return True

    @property
    def balance(self) -> int:
        with self._lock:
            self._maybe_reset()
            return self._state.balance

    def snapshot(self) -> EconomyState:
        with self._lock:
            self._maybe_reset()
            return EconomyState(self._state.balance, self._state.last_reset_day)

    def set_balance(self, balance: int) -> EconomyState:
        """Overwrite the balance for today (admin and tests)."""
        if balance < 0:
            raise ValueError("balance must be >= 0")
        with self._lock:
            self._maybe_reset()
            self._state = EconomyState(balance=balance, last_reset_day=self._state.last_reset_day)
            self._persist(self._state)
            return EconomyState(self._state.balance, self._state.last_reset_day)
