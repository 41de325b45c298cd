"""Tests for EconomyGate."""

import threading
from datetime import date

import pytest

from nova_chat.core.economy import ECONOMY_KEY, EconomyGate
from nova_chat.storage.memory import MemoryStore
from nova_chat.types import ChatSettings, EconomyConfig

from conftest import FixedClock


@pytest.fixture
def gate(kv_store, clock):
    return EconomyGate(kv_store, EconomyConfig(), clock=clock)


class TestCost:
    @pytest.mark.parametrize("prompt,expected", [
        ("/image a red fox", 20),
        ("  /IMAGE a red fox", 20),
        ("/youtube cats", 25),
        ("/resume", 100),
        ("/report on sales", 75),
        ("/project todo app", 150),
        ("/chart revenue", 30),
        ("/table planets", 30),
    ])
    def test_command_costs(self, gate, prompt, expected):
        assert gate.cost(prompt, ChatSettings()) == expected

    def test_command_excludes_surcharges(self, gate):
        settings = ChatSettings(deep_thinking=True, scientific_mode=True)
        assert gate.cost("/image a red fox", settings) == 20

    def test_image_needs_trailing_space(self, gate):
        assert gate.cost("/imagery", ChatSettings()) == 0

    def test_hello_with_deep_thinking(self, gate):
        assert gate.cost("hello", ChatSettings(deep_thinking=True)) == 5

    def test_both_surcharges(self, gate):
        assert gate.cost("hello", ChatSettings(deep_thinking=True, scientific_mode=True)) == 15

    def test_plain_prompt_free(self, gate):
        assert gate.cost("hello", ChatSettings(search_enabled=True)) == 0


class TestDeduct:
    def test_initial_balance_is_allotment(self, gate):
        assert gate.balance == 300

    def test_deduct(self, gate):
        gate.set_balance(50)
        assert gate.try_deduct(20) is True
        assert gate.balance == 30

    def test_refused_when_insufficient(self, gate):
        gate.set_balance(10)
        assert gate.try_deduct(20) is False
        assert gate.balance == 10

    def test_zero_balance_refuses_any_cost(self, gate):
        gate.set_balance(0)
        assert gate.try_deduct(1) is False
        assert gate.try_deduct(0) is True
        assert gate.balance == 0

    def test_negative_amount_rejected(self, gate):
        with pytest.raises(ValueError):
            gate.try_deduct(-1)

    def test_never_negative_under_contention(self, gate):
        gate.set_balance(100)
        results = []

        def worker():
            results.append(gate.try_deduct(7))

        threads = [threading.Thread(target=worker) for _ in range(50)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert results.count(True) == 14
        assert gate.balance == 2

    def test_persisted(self, gate, kv_store):
        gate.try_deduct(20)
        assert kv_store.get(ECONOMY_KEY) == {"balance": 280, "last_reset_day": "2026-03-14"}


class TestDailyReset:
    def test_reset_after_midnight(self, gate, clock):
        gate.set_balance(3)
        clock.today = date(2026, 3, 15)
        assert gate.balance == 300
        assert gate.snapshot().last_reset_day == "2026-03-15"

    def test_reset_restores_even_above_allotment(self, gate, clock):
        gate.set_balance(900)
        clock.today = date(2026, 3, 15)
        assert gate.balance == 300

    def test_same_day_unchanged(self, gate):
        gate.try_deduct(100)
        assert gate.balance == 200
        assert gate.balance == 200

    def test_reset_before_deduct(self, gate, clock):
        gate.set_balance(0)
        clock.today = date(2026, 3, 15)
        assert gate.try_deduct(100) is True
        assert gate.balance == 200

    def test_loads_stale_state_from_store(self):
        store = MemoryStore({ECONOMY_KEY: {"balance": 5, "last_reset_day": "2026-03-01"}})
        gate = EconomyGate(store, EconomyConfig(), clock=FixedClock(date(2026, 3, 14)))
        assert gate.balance == 300

    def test_loads_same_day_state_from_store(self):
        store = MemoryStore({ECONOMY_KEY: {"balance": 5, "last_reset_day": "2026-03-14"}})
        gate = EconomyGate(store, EconomyConfig(), clock=FixedClock(date(2026, 3, 14)))
        assert gate.balance == 5
