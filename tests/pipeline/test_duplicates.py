from __future__ import annotations

from datetime import datetime

from src.models import IngestedAsset
from src.pipeline.duplicates import InMemoryFingerprintStore, SqlFingerprintStore, check_for_duplicates
from src.utils.discovery_outcomes import DiscoveredUrl


def urls(count):
    return [f"https://example.com/blog/post-number-{n}" for n in range(count)]


class CountingStore(InMemoryFingerprintStore):
    def __init__(self, fingerprints=None):
        super().__init__(fingerprints)
        self.reads = 0

    def list_fingerprints(self, scope):
        self.reads += 1
        return super().list_fingerprints(scope)


class TestCheckForDuplicates:
    def test_partitions_new_and_existing(self):
        candidates = urls(10)
        existing = {candidates[n]: f"fp-{n}" for n in (1, 4, 5, 9)}
        store = CountingStore({"acct-1": existing})

        result = check_for_duplicates(candidates, "acct-1", store)

        assert result.stats == {"total": 10, "new": 6, "duplicates": 4}
        assert [item.url for item in result.duplicates] == [candidates[n] for n in (1, 4, 5, 9)]
        assert [item.existing_fingerprint_id for item in result.duplicates] == ["fp-1", "fp-4", "fp-5", "fp-9"]
        assert all(item.existing_fingerprint_id is None for item in result.new)
        assert store.reads == 1

    def test_every_input_lands_in_exactly_one_bucket_in_order(self):
        candidates = urls(6)
        store = InMemoryFingerprintStore({"acct-1": {candidates[2]: "fp-2"}})

        result = check_for_duplicates(candidates, "acct-1", store)

        assert [item.url for item in result.all] == candidates
        assert len(result.new) + len(result.duplicates) == len(result.all)
        assert {item.url for item in result.new}.isdisjoint({item.url for item in result.duplicates})
        assert [item.url for item in result.new] == [url for url in candidates if url != candidates[2]]

    def test_scope_isolation(self):
        candidates = urls(2)
        store = InMemoryFingerprintStore({"acct-2": {candidates[0]: "fp-0"}})

        result = check_for_duplicates(candidates, "acct-1", store)

        assert result.stats["duplicates"] == 0

    def test_idempotent(self):
        candidates = urls(5)
        store = InMemoryFingerprintStore({"acct-1": {candidates[3]: "fp-3"}})

        first = check_for_duplicates(candidates, "acct-1", store)
        second = check_for_duplicates(candidates, "acct-1", store)

        assert first.to_dict() == second.to_dict()

    def test_keeps_discovered_metadata(self):
        item = DiscoveredUrl(
            url="https://example.com/blog/a-post",
            title="A post",
            published_date="2024-01-02",
            content_section="blog",
        )

        result = check_for_duplicates([item], "acct-1", InMemoryFingerprintStore())

        checked = result.new[0]
        assert (checked.title, checked.published_date, checked.content_section) == ("A post", "2024-01-02", "blog")
        assert checked.is_duplicate is False

    def test_plain_strings_get_slug_titles(self):
        result = check_for_duplicates(["https://example.com/blog/hello-world"], "acct-1", InMemoryFingerprintStore())

        assert result.all[0].title == "Hello World"

    def test_empty_input(self):
        result = check_for_duplicates([], "acct-1", InMemoryFingerprintStore())

        assert result.stats == {"total": 0, "new": 0, "duplicates": 0}


class TestSqlFingerprintStore:
    def test_record_and_list(self, sqlite_db):
        store = SqlFingerprintStore(sqlite_db)

        added = store.record("acct-1", [("https://example.com/a", "A"), ("https://example.com/b", None)])
        again = store.record("acct-1", [("https://example.com/a", "A"), ("https://example.com/c", "C")])

        fingerprints = store.list_fingerprints("acct-1")
        assert added == 2
        assert again == 1
        assert set(fingerprints) == {"https://example.com/a", "https://example.com/b", "https://example.com/c"}
        assert store.list_fingerprints("acct-2") == {}

    def test_oldest_row_wins(self, sqlite_db):
        with sqlite_db.session_scope() as session:
            session.add(
                IngestedAsset(
                    id="newer",
                    scope="acct-1",
                    source_url="https://example.com/a",
                    created_at=datetime(2024, 6, 1),
                )
            )
            session.add(
                IngestedAsset(
                    id="older",
                    scope="acct-1",
                    source_url="https://example.com/a",
                    created_at=datetime(2023, 6, 1),
                )
            )

        assert SqlFingerprintStore(sqlite_db).list_fingerprints("acct-1") == {"https://example.com/a": "older"}

    def test_feeds_duplicate_check(self, sqlite_db):
        store = SqlFingerprintStore(sqlite_db)
        store.record("acct-1", [("https://example.com/blog/post-number-1", "One")])

        result = check_for_duplicates(urls(3), "acct-1", store)

        assert [item.url for item in result.duplicates] == ["https://example.com/blog/post-number-1"]
        assert result.duplicates[0].existing_fingerprint_id
