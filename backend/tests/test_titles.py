"""Tests for thread title generation."""

import pytest

from chatzo.services.titles import clean_title, trigger_title_generation


class TestCleanTitle:
    def test_clean_title(self):
        """Test quotes and prefixes are stripped from model titles."""
        assert clean_title('"Python Data Analysis"') == "Python Data Analysis"
        assert clean_title("Title: Trip Planning\nextra") == "Trip Planning"
        assert clean_title("   ") == "New Chat"
        assert len(clean_title("x" * 300)) == 100


class TestTriggerTitleGeneration:
    """Background title jobs."""

    @pytest.mark.asyncio
    async def test_title_written_back(self, store, user, monkeypatch):
        """Test the generated title is stored on the thread."""

        async def fake_title(text):
            assert text == "plan a trip to Lisbon"
            return "Lisbon Trip"

        monkeypatch.setattr("chatzo.services.titles.generate_thread_title", fake_title)
        thread = store.add_thread(user.id)

        await trigger_title_generation(store, thread.id, "plan a trip to Lisbon")

        assert store.threads[thread.id].title == "Lisbon Trip"

    @pytest.mark.asyncio
    async def test_failure_is_only_logged(self, store, user, monkeypatch):
        """Test a failing title model leaves the thread untouched."""

        async def broken_title(text):
            raise RuntimeError("title model unavailable")

        monkeypatch.setattr("chatzo.services.titles.generate_thread_title", broken_title)
        thread = store.add_thread(user.id)
        original = store.threads[thread.id].title

        await trigger_title_generation(store, thread.id, "hello")

        assert store.threads[thread.id].title == original
