import asyncio
import json

import pytest

from src.locale_cache import LocaleCacheRegistry, LocaleSnapshotCache


@pytest.fixture
def cache(workspace, fake_history):
    return LocaleSnapshotCache(workspace.root, fake_history)


class TestInitialization:

    @pytest.mark.asyncio
    async def test_discovers_and_preloads_without_history(self, workspace, fake_history, cache):
        en_path = workspace.write_locale("en", {"nav": {"home": "Home"}})
        workspace.write_locale("fr", {"nav": {"home": "Accueil"}})

        await cache.initialize("en")
        await cache.initialize("en")

        assert sorted(cache.locales()) == ["en", "fr"]
        assert cache.head_content(en_path) == {"nav": {"home": "Home"}}
        assert [f.locale for f in cache.locale_files("fr")] == ["fr"]
        assert fake_history.calls == []

    @pytest.mark.asyncio
    async def test_unparseable_locale_file_has_no_head_content(self, workspace, cache):
        bad_path = workspace.write("locales/en.json", "{oops")
        await cache.initialize("en")
        assert cache.head_content(bad_path) is None
        assert cache.locales() == ["en"]


class TestHistory:

    @pytest.mark.asyncio
    async def test_history_is_fetched_once(self, workspace, fake_history, cache):
        en_path = workspace.write_locale("en", {})
        workspace.write_locale("fr", {})
        fake_history.add_commit("locales/en.json", "E2")
        fake_history.add_commit("locales/en.json", "E1")
        await cache.initialize("en")

        await asyncio.gather(cache.ensure_history(120), cache.ensure_history(120))

        assert [c.hash for c in cache.commit_history(en_path)] == ["E2", "E1"]
        assert len([c for c in fake_history.calls if c[0] == 'list_commits']) == 2

    @pytest.mark.asyncio
    async def test_content_at_commit_is_shared(self, workspace, fake_history, cache):
        en_path = workspace.write_locale("en", {})
        fake_history.add_commit("locales/en.json", "E1", json.dumps({"a": "A"}))

        first, second = await asyncio.gather(
            cache.content_at_commit(en_path, "E1"),
            cache.content_at_commit(en_path, "E1"),
        )
        assert first == second == {"a": "A"}
        assert fake_history.calls == [('content_at', 'locales/en.json', 'E1')]

    @pytest.mark.asyncio
    async def test_content_at_commit_rejects_non_objects(self, workspace, fake_history, cache):
        en_path = workspace.write_locale("en", {})
        fake_history.add_commit("locales/en.json", "E1", "[1, 2]")
        assert await cache.content_at_commit(en_path, "E1") is None
        assert await cache.content_at_commit(en_path, "UNKNOWN") is None


class TestSourceIndex:

    @pytest.mark.asyncio
    async def test_index_skips_excluded_directories(self, workspace, fake_history, cache):
        login = workspace.write("src/components/Login.tsx", "export const L = () => <p>{t('auth.login')}</p>;\n")
        workspace.write("src/other.ts", "const key = 'auth.login';\n")
        workspace.write("node_modules/lib/index.js", "t('auth.login')\n")

        await cache.build_source_index(["auth.login", "nav.home"])

        assert cache.source_files_for_key("auth.login") == [login]
        assert cache.source_files_for_key("nav.home") == []

    @pytest.mark.asyncio
    async def test_source_history_is_cached(self, workspace, fake_history, cache):
        path = workspace.write("src/App.tsx", "")
        fake_history.add_commit("src/App.tsx", "S1")

        await cache.source_commit_history(path, 365, 50)
        commits = await cache.source_commit_history(path, 365, 50)

        assert [c.hash for c in commits] == ["S1"]
        assert fake_history.calls == [('list_commits', 'src/App.tsx')]


class TestSuggestionsAndLifecycle:

    @pytest.mark.asyncio
    async def test_find_similar_keys(self, workspace, cache):
        workspace.write_locale("en", {"auth": {"login": "Log in", "logout": "Log out"}, "nav": {"home": "Home"}})
        await cache.initialize("en")
        assert cache.find_similar_keys("en", "auth.logn") == ["auth.login", "auth.logout"]
        assert cache.find_similar_keys("en", "auth.logn", max_distance=1) == ["auth.login"]

    @pytest.mark.asyncio
    async def test_clear_forgets_everything(self, workspace, cache):
        workspace.write_locale("en", {})
        await cache.initialize("en")
        cache.clear()
        assert cache.locales() == []

    def test_registry_owns_one_cache_per_workspace(self, workspace, fake_history):
        registry = LocaleCacheRegistry(lambda root: fake_history)
        first = registry.get(workspace.root)
        assert registry.get(workspace.root) is first

        registry.clear_all()
        assert registry.get(workspace.root) is not first
