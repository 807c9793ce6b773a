import asyncio

import aiohttp
import pytest
from pydantic import ValidationError

from versync.app_updater import (
    GitHubApiSource, ReleasePageSource, RemoteRelease, UpdateDetector, UpdateOutcome, UpdateResult,
    UpdateState, UpdateTrigger, VersionInfo, default_sources,
)
from versync.config import UpdaterSettings
from versync.exceptions import (
    CheckFailureReason, UpdateAlreadyInProgress, UpdateCheckFailed, UpdateTriggerFailed,
)

from conftest import FakeResponse, FakeSessionFactory

API_URL = "https://api.github.com/repos/Godi13/mirror/releases/latest"
PAGE_URL = "https://github.com/Godi13/mirror/releases/latest"


class StaticSource:
    def __init__(self, tag=None, url=None, error=None, name="static"):
        self.tag = tag
        self.url = url
        self.error = error
        self.name = name
        self.calls = 0

    async def fetch_latest(self):
        self.calls += 1
        if self.error:
            raise self.error
        return RemoteRelease(self.tag, self.url)


class TestVersionInfo:

    @pytest.mark.parametrize("current, latest, expected", [
        ("1.2.3", "1.2.4", True),
        ("1.9.0", "1.10.0", True),
        ("2.0.0", "2.0.0", False),
    ])
    def test_has_update_is_derived(self, current, latest, expected):
        assert VersionInfo(current=current, latest=latest).has_update is expected

    def test_has_update_cannot_be_set(self):
        with pytest.raises(ValidationError):
            VersionInfo(current="1.0.0", latest="1.0.0", has_update=True)

    def test_rejects_unparsable_versions(self):
        with pytest.raises(ValidationError):
            VersionInfo(current="1.0.0", latest="latest")

    def test_serializes_has_update(self):
        data = VersionInfo(current="v1.0.0", latest="1.1.0", download_url="u").model_dump()
        assert data == {"current": "1.0.0", "latest": "1.1.0", "download_url": "u", "has_update": True}


class TestUpdateDetector:

    @pytest.mark.asyncio
    async def test_newer_release_sets_download_url(self):
        source = StaticSource("v0.3.0", "https://github.com/Godi13/mirror/releases/tag/v0.3.0")
        info = await UpdateDetector([source], "0.2.0").check()
        assert info.has_update
        assert info.latest == "0.3.0"
        assert info.download_url.endswith("v0.3.0")

    @pytest.mark.asyncio
    async def test_same_version_has_no_url(self):
        info = await UpdateDetector([StaticSource("v0.2.0", "https://x")], "0.2.0").check()
        assert not info.has_update
        assert info.download_url is None

    @pytest.mark.asyncio
    async def test_explicit_local_version(self):
        info = await UpdateDetector([StaticSource("1.10.0")], "0.0.1").check("1.9.0")
        assert info.current == "1.9.0"
        assert info.has_update

    @pytest.mark.asyncio
    async def test_never_cached(self):
        source = StaticSource("1.0.0")
        detector = UpdateDetector([source], "1.0.0")
        await detector.check()
        source.tag = "1.0.1"
        assert (await detector.check()).has_update
        assert source.calls == 2

    @pytest.mark.asyncio
    async def test_malformed_remote_version_is_classified(self):
        with pytest.raises(UpdateCheckFailed) as excinfo:
            await UpdateDetector([StaticSource("nightly-build")], "1.0.0").check()
        assert excinfo.value.reason is CheckFailureReason.PARSE

    @pytest.mark.asyncio
    async def test_falls_back_to_next_source(self):
        failing = StaticSource(error=UpdateCheckFailed(CheckFailureReason.NETWORK, "rate limited"))
        fallback = StaticSource("2.0.0")
        info = await UpdateDetector([failing, fallback], "1.0.0").check()
        assert info.latest == "2.0.0"
        assert (failing.calls, fallback.calls) == (1, 1)

    @pytest.mark.asyncio
    async def test_first_success_skips_fallback(self):
        fallback = StaticSource("9.0.0")
        await UpdateDetector([StaticSource("2.0.0"), fallback], "1.0.0").check()
        assert fallback.calls == 0

    @pytest.mark.asyncio
    async def test_all_sources_failing_raises_last_error(self):
        sources = [
            StaticSource(error=UpdateCheckFailed(CheckFailureReason.NETWORK, "down")),
            StaticSource(error=UpdateCheckFailed(CheckFailureReason.REMOTE_FORMAT, "garbage")),
        ]
        with pytest.raises(UpdateCheckFailed) as excinfo:
            await UpdateDetector(sources, "1.0.0").check()
        assert excinfo.value.reason is CheckFailureReason.REMOTE_FORMAT

    @pytest.mark.asyncio
    async def test_concurrent_checks_are_independent(self):
        source = StaticSource("1.1.0")
        detector = UpdateDetector([source], "1.0.0")
        results = await asyncio.gather(*(detector.check() for _ in range(5)))
        assert all(r.has_update for r in results)
        assert source.calls == 5


class TestGitHubApiSource:

    @pytest.mark.asyncio
    async def test_parses_release(self):
        factory = FakeSessionFactory({API_URL: FakeResponse(json_data={
            "tag_name": "v0.1.5", "html_url": "https://github.com/Godi13/mirror/releases/tag/v0.1.5",
        })})
        release = await GitHubApiSource(UpdaterSettings(), factory).fetch_latest()
        assert release == RemoteRelease("v0.1.5", "https://github.com/Godi13/mirror/releases/tag/v0.1.5")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("response, reason", [
        (FakeResponse(status=403, headers={"x-ratelimit-remaining": "0"}), CheckFailureReason.NETWORK),
        (FakeResponse(status=500, text="oops"), CheckFailureReason.NETWORK),
        (aiohttp.ClientConnectionError("offline"), CheckFailureReason.NETWORK),
        (asyncio.TimeoutError(), CheckFailureReason.NETWORK),
        (FakeResponse(json_data=ValueError("Expecting value")), CheckFailureReason.REMOTE_FORMAT),
        (FakeResponse(json_data=["v1.0.0"]), CheckFailureReason.REMOTE_FORMAT),
        (FakeResponse(json_data={"html_url": "x"}), CheckFailureReason.REMOTE_FORMAT),
    ])
    async def test_failures_are_classified(self, response, reason):
        factory = FakeSessionFactory({API_URL: response})
        with pytest.raises(UpdateCheckFailed) as excinfo:
            await GitHubApiSource(UpdaterSettings(), factory).fetch_latest()
        assert excinfo.value.reason is reason


class TestReleasePageSource:

    @pytest.mark.asyncio
    async def test_tag_from_redirect_url(self):
        factory = FakeSessionFactory({PAGE_URL: FakeResponse(url="https://github.com/Godi13/mirror/releases/tag/v0.2.1")})
        release = await ReleasePageSource(UpdaterSettings(), factory).fetch_latest()
        assert release.tag == "v0.2.1"
        assert release.url == "https://github.com/Godi13/mirror/releases/tag/v0.2.1"

    @pytest.mark.asyncio
    async def test_tag_from_html(self):
        html = '<a href="/Godi13/mirror/releases/tag/v0.1.5">Mirror v0.1.5</a>'
        factory = FakeSessionFactory({PAGE_URL: FakeResponse(url=PAGE_URL, text=html)})
        assert (await ReleasePageSource(UpdaterSettings(), factory).fetch_latest()).tag == "v0.1.5"

    @pytest.mark.asyncio
    async def test_no_tag_is_remote_format_error(self):
        factory = FakeSessionFactory({PAGE_URL: FakeResponse(url=PAGE_URL, text="<html></html>")})
        with pytest.raises(UpdateCheckFailed) as excinfo:
            await ReleasePageSource(UpdaterSettings(), factory).fetch_latest()
        assert excinfo.value.reason is CheckFailureReason.REMOTE_FORMAT


@pytest.mark.asyncio
async def test_default_sources_fall_back_to_release_page():
    factory = FakeSessionFactory({
        API_URL: FakeResponse(status=403, headers={"x-ratelimit-remaining": "0"}),
        PAGE_URL: FakeResponse(url="https://github.com/Godi13/mirror/releases/tag/v0.9.0"),
    })
    info = await UpdateDetector(default_sources(UpdaterSettings(), factory), "0.2.0").check()
    assert info.latest == "0.9.0"
    assert [url for _, url in factory.requests] == [API_URL, PAGE_URL]


def test_fallback_can_be_disabled():
    sources = default_sources(UpdaterSettings(use_release_page_fallback=False))
    assert [s.name for s in sources] == ["github-api"]


class SlowUpdater:
    def __init__(self, result=None, error=None):
        self.calls = 0
        self.release = asyncio.Event()
        self.result = result or UpdateResult(UpdateOutcome.INSTALLED, "installed")
        self.error = error

    async def run(self):
        self.calls += 1
        await self.release.wait()
        if self.error:
            raise self.error
        return self.result


class TestUpdateTrigger:

    @pytest.mark.asyncio
    async def test_concurrent_triggers_share_one_run(self):
        updater = SlowUpdater()
        state = UpdateState()
        trigger = UpdateTrigger(updater, state)
        first = asyncio.create_task(trigger.trigger())
        second = asyncio.create_task(UpdateTrigger(updater, state).trigger())
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        assert state.busy
        updater.release.set()
        results = await asyncio.gather(first, second)
        assert updater.calls == 1
        assert results[0] is results[1]
        assert not state.busy

    @pytest.mark.asyncio
    async def test_fail_fast_when_joining_disabled(self):
        updater = SlowUpdater()
        state = UpdateState()
        first = asyncio.create_task(UpdateTrigger(updater, state).trigger())
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        with pytest.raises(UpdateAlreadyInProgress):
            await UpdateTrigger(updater, state, join_in_flight=False).trigger()
        updater.release.set()
        await first
        assert updater.calls == 1

    @pytest.mark.asyncio
    async def test_sequential_triggers_each_run(self):
        updater = SlowUpdater()
        updater.release.set()
        trigger = UpdateTrigger(updater, UpdateState())
        await trigger.trigger()
        await trigger.trigger()
        assert updater.calls == 2

    @pytest.mark.asyncio
    async def test_check_failure_is_wrapped(self):
        updater = SlowUpdater(error=UpdateCheckFailed(CheckFailureReason.NETWORK, "offline"))
        updater.release.set()
        with pytest.raises(UpdateTriggerFailed):
            await UpdateTrigger(updater, UpdateState()).trigger()

    @pytest.mark.asyncio
    async def test_cancelled_caller_does_not_cancel_update(self):
        updater = SlowUpdater()
        trigger = UpdateTrigger(updater, UpdateState())
        waiter = asyncio.create_task(trigger.trigger())
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        waiter.cancel()
        with pytest.raises(asyncio.CancelledError):
            await waiter

        unknown = await trigger.shutdown()
        assert unknown.outcome is UpdateOutcome.UNKNOWN

        updater.release.set()
        assert (await trigger.shutdown(timeout=1)).outcome is UpdateOutcome.INSTALLED

    @pytest.mark.asyncio
    async def test_shutdown_without_update(self):
        assert await UpdateTrigger(SlowUpdater(), UpdateState()).shutdown() is None
