from __future__ import annotations

import asyncio
import io
import zipfile

import pytest

from ro_subtitles.archive_cache import ArchiveCache
from ro_subtitles.extract import ArchiveError
from ro_subtitles.models import PageMetadata, ResolutionRequest, SubtitleRecord
from ro_subtitles.service import ResolutionCoordinator, decode_path, encode_path
from ro_subtitles.settings import Settings


pytestmark = pytest.mark.service

BASE = "https://addon.example"
VIDEO = "Movie.Title.2023.1080p.WEB-DL.x264-RARBG.mkv"


def make_zip(names):
    bio = io.BytesIO()
    with zipfile.ZipFile(bio, mode="w") as z:
        for name in names:
            z.writestr(name, f"1\n00:00:01,000 --> 00:00:02,000\n{name}\n")
    return bio.getvalue()


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class FakeClient:
    def __init__(self, results, delay: float = 0.0, metadata=None):
        self.results = results
        self.delay = delay
        self.metadata = metadata or PageMetadata()
        self.searches = []
        self.page_fetches = []

    async def search_by_imdb(self, imdb_id):
        self.searches.append(imdb_id)
        if self.delay:
            await asyncio.sleep(self.delay)
        return list(self.results.get(imdb_id, []))

    async def fetch_page_metadata(self, url):
        self.page_fetches.append(url)
        return self.metadata

    async def validate(self):
        return True


class FakeDownloader:
    def __init__(self, archives):
        self.archives = archives
        self.calls = []

    async def __call__(self, caller_key, record_id):
        self.calls.append(record_id)
        payload = self.archives[record_id]
        if isinstance(payload, Exception):
            raise payload
        return payload


def make_coordinator(results, archives, clock=None, delay=0.0, metadata=None, **overrides):
    clock = clock or FakeClock()
    client = FakeClient(results, delay=delay, metadata=metadata)
    downloader = FakeDownloader(archives)
    config = Settings(**overrides)
    coordinator = ResolutionCoordinator(
        config,
        client_factory=lambda key: client,
        archive_cache=ArchiveCache(downloader, clock=clock),
        clock=clock,
    )
    return coordinator, client, downloader


def record(rid, language="ro", **kwargs):
    return SubtitleRecord(id=rid, language=language, link=kwargs.pop("link", f"https://subs.example/s/{rid}"), **kwargs)


def movie_request(media_id="tt0000001", **kwargs):
    kwargs.setdefault("caller_key", "key-1")
    kwargs.setdefault("video_filename", VIDEO)
    return ResolutionRequest(media_id=media_id, **kwargs)


def paths_of(results):
    return [decode_path(r.url.split("/")[-2]) for r in results]


def test_repeat_resolution_is_served_from_cache():
    coordinator, client, downloader = make_coordinator(
        {"tt0000001": [record("1")]},
        {"1": make_zip(["Movie.Title.2023.1080p.WEB-DL.x264-RARBG.srt"])},
    )

    async def main():
        first = await coordinator.resolve(movie_request(), BASE)
        second = await coordinator.resolve(movie_request(), BASE)
        return first, second

    first, second = asyncio.run(main())
    assert first == second
    assert len(first) == 1
    assert client.searches == ["tt0000001"]
    assert downloader.calls == ["1"]


def test_concurrent_requests_share_one_resolution():
    coordinator, client, downloader = make_coordinator(
        {"tt0000001": [record("1")]},
        {"1": make_zip(["a.srt", "b.srt"])},
        delay=0.02,
    )

    async def main():
        return await asyncio.gather(*(coordinator.resolve(movie_request(), BASE) for _ in range(10)))

    results = asyncio.run(main())
    assert all(r == results[0] for r in results)
    assert len(results[0]) == 2
    assert client.searches == ["tt0000001"]
    assert downloader.calls == ["1"]
    assert not coordinator.in_flight(movie_request().cache_key)


def test_empty_results_expire_before_non_empty_ones():
    clock = FakeClock()
    coordinator, client, _ = make_coordinator(
        {"tt_full": [record("1")]},
        {"1": make_zip(["a.srt"])},
        clock=clock,
    )

    async def both():
        empty = await coordinator.resolve(movie_request("tt_empty"), BASE)
        full = await coordinator.resolve(movie_request("tt_full"), BASE)
        return empty, full

    async def main():
        empty, full = await both()
        assert empty == [] and len(full) == 1
        clock.now = 61
        await both()
        assert client.searches.count("tt_empty") == 2
        assert client.searches.count("tt_full") == 1
        clock.now = 61 + 15 * 60
        await both()
        assert client.searches.count("tt_full") == 2

    asyncio.run(main())


def test_results_capped_and_best_match_first():
    names = [f"Movie.Title.2023.Part{i}.srt" for i in range(11)]
    names.insert(7, "Movie.Title.2023.1080p.WEB-DL.x264-RARBG.srt")
    coordinator, _, _ = make_coordinator({"tt0000001": [record("1")]}, {"1": make_zip(names)})

    results = asyncio.run(coordinator.resolve(movie_request(), BASE))

    assert len(results) == 5
    assert paths_of(results)[0] == "Movie.Title.2023.1080p.WEB-DL.x264-RARBG.srt"
    assert results[0].url.startswith(f"{BASE}/key-1/proxy/1/")
    assert results[0].url.endswith("/sub.srt")
    assert results[0].lang == "ron"
    assert results[0].id.startswith("subsro_1_")


def test_ties_keep_archive_order():
    coordinator, _, _ = make_coordinator(
        {"tt0000001": [record("1")]},
        {"1": make_zip(["x1.srt", "x2.srt", "x3.srt"])},
        fuzzy_cap=0,
    )
    results = asyncio.run(coordinator.resolve(movie_request(video_filename=""), BASE))
    assert paths_of(results) == ["x1.srt", "x2.srt", "x3.srt"]


def test_failing_record_does_not_sink_the_batch():
    coordinator, _, _ = make_coordinator(
        {"tt0000001": [record("bad"), record("corrupt"), record("good")]},
        {"bad": ArchiveError("boom"), "corrupt": b"junk", "good": make_zip(["ok.srt"])},
    )
    results = asyncio.run(coordinator.resolve(movie_request(), BASE))
    assert paths_of(results) == ["ok.srt"]


def test_unexpected_search_failure_returns_empty_and_is_not_cached():
    coordinator, client, _ = make_coordinator({}, {})

    async def broken(imdb_id):
        client.searches.append(imdb_id)
        raise RuntimeError("upstream exploded")

    client.search_by_imdb = broken

    async def main():
        first = await coordinator.resolve(movie_request(), BASE)
        second = await coordinator.resolve(movie_request(), BASE)
        return first, second

    assert asyncio.run(main()) == ([], [])
    assert len(client.searches) == 2


def test_missing_caller_key_returns_empty_without_search():
    coordinator, client, _ = make_coordinator({"tt0000001": [record("1")]}, {})
    assert asyncio.run(coordinator.resolve(movie_request(caller_key=""), BASE)) == []
    assert client.searches == []


def test_language_filter_applies_and_key_ignores_order():
    coordinator, client, downloader = make_coordinator(
        {"tt0000001": [record("ro1", "ro"), record("en1", "en"), record("it1", "ita")]},
        {"ro1": make_zip(["ro.srt"]), "en1": make_zip(["en.srt"]), "it1": make_zip(["it.srt"])},
    )

    async def main():
        first = await coordinator.resolve(movie_request(language_filter=frozenset(["ro", "en"])), BASE)
        second = await coordinator.resolve(movie_request(language_filter=frozenset(["en", "ro"])), BASE)
        return first, second

    first, second = asyncio.run(main())
    assert first == second
    assert {r.lang for r in first} == {"ron", "eng"}
    assert "it1" not in downloader.calls
    assert client.searches == ["tt0000001"]


def test_series_keeps_only_requested_episode_from_season_pack():
    pack = make_zip(
        [
            "Show.S01E04.720p.HDTV.x264-KILLERS.srt",
            "Show.S01E05.720p.HDTV.x264-KILLERS.srt",
            "Show.S02E05.720p.HDTV.x264-KILLERS.srt",
        ]
    )
    coordinator, _, _ = make_coordinator({"tt0000002": [record("pack")]}, {"pack": pack})
    request = ResolutionRequest(
        media_id="tt0000002",
        season=1,
        episode=5,
        is_series=True,
        video_filename="Show.S01E05.720p.HDTV.x264-KILLERS.mkv",
        caller_key="key-1",
    )
    results = asyncio.run(coordinator.resolve(request, BASE))
    assert paths_of(results) == ["Show.S01E05.720p.HDTV.x264-KILLERS.srt"]


def test_record_policy_falls_back_to_all_records():
    coordinator, _, downloader = make_coordinator(
        {"tt0000002": [record("a", title="Show sezonul 1"), record("b", title="Show complete")]},
        {"a": make_zip(["a.srt"]), "b": make_zip(["b.srt"])},
        match_policy="record",
    )
    request = ResolutionRequest(media_id="tt0000002", season=1, episode=5, is_series=True, caller_key="key-1")
    results = asyncio.run(coordinator.resolve(request, BASE))
    assert sorted(paths_of(results)) == ["a.srt", "b.srt"]
    assert sorted(downloader.calls) == ["a", "b"]


def test_record_policy_keeps_matching_records():
    coordinator, _, downloader = make_coordinator(
        {"tt0000002": [record("a", title="Show S01E05"), record("b", description="Show S01E06")]},
        {"a": make_zip(["a.srt"]), "b": make_zip(["b.srt"])},
        match_policy="record",
    )
    request = ResolutionRequest(media_id="tt0000002", season=1, episode=5, is_series=True, caller_key="key-1")
    results = asyncio.run(coordinator.resolve(request, BASE))
    assert paths_of(results) == ["a.srt"]
    assert downloader.calls == ["a"]


def test_page_metadata_only_fetched_when_filenames_lack_signal():
    coordinator, client, _ = make_coordinator(
        {"tt0000001": [record("signal"), record("plain")]},
        {
            "signal": make_zip(["Movie.Title.2023.1080p.WEB-DL.x264-RARBG.srt"]),
            "plain": make_zip(["romana.srt"]),
        },
        metadata=PageMetadata(fps="23.976", formats=("WEB-DL",)),
    )
    results = asyncio.run(coordinator.resolve(movie_request(), BASE))
    assert client.page_fetches == ["https://subs.example/s/plain"]
    assert len(results) == 2


def test_retail_record_wins_a_tie():
    coordinator, _, _ = make_coordinator(
        {"tt0000001": [record("fan"), record("shop", translator="Retail")]},
        {"fan": make_zip(["same.srt"]), "shop": make_zip(["same.srt"])},
    )
    results = asyncio.run(coordinator.resolve(movie_request(video_filename=""), BASE))
    assert results[0].url.split("/")[-3] == "shop"


def test_fetch_subtitle_reads_member_bytes():
    coordinator, _, downloader = make_coordinator({}, {"1": make_zip(["dir/Film.srt", "other.srt"])})
    filename, content = asyncio.run(coordinator.fetch_subtitle("key-1", "1", encode_path("dir/Film.srt")))
    assert filename == "Film.srt"
    assert b"dir/Film.srt" in content


def test_fetch_subtitle_rejects_unknown_paths():
    coordinator, _, _ = make_coordinator({}, {"1": make_zip(["a.srt"])})
    with pytest.raises(ArchiveError):
        asyncio.run(coordinator.fetch_subtitle("key-1", "1", encode_path("b.srt")))
    with pytest.raises(ArchiveError):
        asyncio.run(coordinator.fetch_subtitle("key-1", "1", "!!!"))


def test_clients_reused_per_caller_key():
    coordinator, client, _ = make_coordinator({}, {})
    assert coordinator.client_for("k") is client
    assert asyncio.run(coordinator.validate_key("k")) is True
    assert asyncio.run(coordinator.validate_key("")) is False


def test_cached_results_carry_each_callers_own_key():
    coordinator, client, _ = make_coordinator({"tt0000001": [record("1")]}, {"1": make_zip(["Movie.srt"])})

    async def main():
        alice = await coordinator.resolve(movie_request(caller_key="alice-secret"), "https://a.example")
        bob = await coordinator.resolve(movie_request(caller_key="bob-secret"), "https://b.example")
        return alice, bob

    alice, bob = asyncio.run(main())
    assert client.searches == ["tt0000001"]
    assert alice[0].url.startswith("https://a.example/alice-secret/proxy/1/")
    assert bob[0].url.startswith("https://b.example/bob-secret/proxy/1/")
    assert "alice-secret" not in bob[0].url
    assert alice[0].id == bob[0].id


def test_joined_callers_get_their_own_key():
    coordinator, client, _ = make_coordinator(
        {"tt0000001": [record("1")]},
        {"1": make_zip(["Movie.srt"])},
        delay=0.02,
    )

    async def main():
        return await asyncio.gather(
            coordinator.resolve(movie_request(caller_key="alice-secret"), BASE),
            coordinator.resolve(movie_request(caller_key="bob-secret"), BASE),
        )

    alice, bob = asyncio.run(main())
    assert client.searches == ["tt0000001"]
    assert "/alice-secret/" in alice[0].url
    assert "/bob-secret/" in bob[0].url
