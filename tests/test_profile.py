"""Tests for profile merging, background extraction and the LLM extractor."""

import threading

from nova_chat.core.profile import ProfileExtractionTask, has_information, merge_profile
from nova_chat.providers.extractor import LLMProfileExtractor, parse_json_object
from nova_chat.types import UserProfile

from conftest import FakeProfileExtractor, MockLLMProvider


class TestMergeProfile:
    def test_additive(self):
        base = UserProfile(name="Lina", interests=["chess"])
        merged = merge_profile(base, {"interests": ["go", "chess"], "facts": ["owns a cat"]})
        assert merged.interests == ["chess", "go"]
        assert merged.facts == ["owns a cat"]
        assert merged.name == "Lina"

    def test_idempotent(self):
        partial = {"name": "Lina", "interests": ["chess"], "facts": ["vegan"]}
        once = merge_profile(UserProfile(), partial)
        twice = merge_profile(once, partial)
        assert once == twice

    def test_empty_values_do_not_clear(self):
        base = UserProfile(name="Lina", profession="pilot")
        merged = merge_profile(base, {"name": "", "profession": None})
        assert merged.name == "Lina"
        assert merged.profession == "pilot"

    def test_non_empty_replaces(self):
        merged = merge_profile(UserProfile(profession="pilot"), {"profession": "teacher"})
        assert merged.profession == "teacher"

    def test_string_interest_accepted(self):
        merged = merge_profile(UserProfile(), {"interests": "hiking"})
        assert merged.interests == ["hiking"]

    def test_original_untouched(self):
        base = UserProfile(interests=["a"])
        merge_profile(base, {"interests": ["b"]})
        assert base.interests == ["a"]

    def test_has_information(self):
        assert not has_information({})
        assert not has_information({"name": "", "interests": []})
        assert has_information({"facts": ["x"]})


class TestProfileExtractionTask:
    def test_result_delivered(self):
        received = []
        task = ProfileExtractionTask(FakeProfileExtractor({"name": "Omar"}), received.append)
        task.submit("I'm Omar", "Hi Omar")
        task.wait()
        task.shutdown()
        assert received == [{"name": "Omar"}]

    def test_empty_result_skipped(self):
        received = []
        task = ProfileExtractionTask(FakeProfileExtractor({}), received.append)
        task.submit("hello", "hi")
        task.wait()
        task.shutdown()
        assert received == []

    def test_failure_swallowed(self):
        received = []
        task = ProfileExtractionTask(
            FakeProfileExtractor(error=RuntimeError("boom")), received.append,
        )
        task.submit("hello", "hi")
        task.wait()
        task.shutdown()
        assert received == []

    def test_runs_off_caller_thread(self):
        threads = []

        class Recorder:
            def extract(self, prompt, reply):
                threads.append(threading.current_thread().name)
                return {"facts": ["x"]}

        task = ProfileExtractionTask(Recorder(), lambda partial: None)
        task.submit("a", "b")
        task.wait()
        task.shutdown()
        assert threads and threads[0] != threading.current_thread().name

    def test_no_extractor(self):
        task = ProfileExtractionTask(None, lambda partial: None)
        assert task.submit("a", "b") is None
        task.wait()
        task.shutdown()


class TestLLMProfileExtractor:
    def test_parses_json_reply(self):
        llm = MockLLMProvider('Here you go: {"name": "Sara", "interests": ["art"]}')
        result = LLMProfileExtractor(llm).extract("I'm Sara", "Nice to meet you")
        assert result == {"name": "Sara", "interests": ["art"]}
        assert 'User Prompt: "I\'m Sara"' in llm.calls[0]["user"]

    def test_garbage_reply(self):
        assert LLMProfileExtractor(MockLLMProvider("no json")).extract("a", "b") == {}

    def test_parse_json_object_rejects_arrays(self):
        assert parse_json_object("[1, 2]") == {}
