"""Tests for the shared auth token store."""

import os
import stat
from concurrent.futures import ThreadPoolExecutor

from hermit_launcher import token_store


class TestGetOrCreate:
    def test_creates_token(self, cache_dir):
        token = token_store.get_or_create(cache_dir)
        assert token.startswith(token_store.TOKEN_PREFIX)
        assert len(token) == len(token_store.TOKEN_PREFIX) + 32
        assert os.path.exists(token_store.token_path(cache_dir))

    def test_reuses_token(self, cache_dir):
        first = token_store.get_or_create(cache_dir)
        second = token_store.get_or_create(cache_dir)
        assert first == second

    def test_new_token_after_removal(self, cache_dir):
        first = token_store.get_or_create(cache_dir)
        assert token_store.remove(cache_dir) is True
        second = token_store.get_or_create(cache_dir)
        assert first != second

    def test_returns_trimmed_contents_verbatim(self, cache_dir):
        os.makedirs(cache_dir)
        with open(token_store.token_path(cache_dir), "w") as f:
            f.write("  sk-existing-token\n")
        assert token_store.get_or_create(cache_dir) == "sk-existing-token"

    def test_empty_file_gets_replaced(self, cache_dir):
        os.makedirs(cache_dir)
        open(token_store.token_path(cache_dir), "w").close()
        token = token_store.get_or_create(cache_dir)
        assert token.startswith(token_store.TOKEN_PREFIX)

    def test_token_file_is_private(self, cache_dir):
        token_store.get_or_create(cache_dir)
        mode = stat.S_IMODE(os.stat(token_store.token_path(cache_dir)).st_mode)
        assert mode == 0o600

    def test_concurrent_callers_agree(self, cache_dir):
        with ThreadPoolExecutor(max_workers=8) as pool:
            tokens = list(pool.map(lambda _: token_store.get_or_create(cache_dir), range(16)))
        assert len(set(tokens)) == 1


class TestRemove:
    def test_remove_missing(self, cache_dir):
        assert token_store.remove(cache_dir) is False
