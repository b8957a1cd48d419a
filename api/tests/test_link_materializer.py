import asyncio

from fakes import FakeHosting, FakeLinkRepository, FakeRedis, decode_failed
from shortlinks.jobs.link_materializer import materialize_links
from shortlinks.schemas.imports import CsvImportPayload
from shortlinks.services.cursor_store import CursorStore
from shortlinks.services.links import LinkIntent, LinkProcessor

PLATFORM_DOMAINS = {"dub.sh"}


def _payload(folder_id: str | None = None) -> CsvImportPayload:
    return CsvImportPayload.model_validate(
        {
            "id": "job_1",
            "workspaceId": "ws_1",
            "userId": "user_1",
            "folderId": folder_id,
            "url": "imports/job_1.csv",
            "mapping": {"link": "link", "url": "url"},
        }
    )


def _materialize(intents, *, repository, redis, hosting, payload=None):
    payload = payload or _payload()
    return asyncio.run(
        materialize_links(
            intents,
            payload=payload,
            repository=repository,
            cursor_store=CursorStore(redis, workspace_id=payload.workspace_id, job_id=payload.id),
            hosting=hosting,
            link_processor=LinkProcessor(repository=repository, platform_domains=PLATFORM_DOMAINS),
            platform_domains=PLATFORM_DOMAINS,
        )
    )


def test_materialize_links_creates_links_tags_and_custom_domains() -> None:
    repository = FakeLinkRepository()
    repository.tags["ws_1"] = ["promo"]
    redis = FakeRedis()
    hosting = FakeHosting()
    intents = [
        LinkIntent(domain="acme.co", key="spring", url="https://example.com/spring", tags=["Promo", "Q2"]),
        LinkIntent(domain="dub.sh", key="acme-spring", url="https://example.com/spring"),
        LinkIntent(domain="dub.sh", key="pricing", url="https://example.com/pricing"),
    ]

    result = _materialize(intents, repository=repository, redis=redis, hosting=hosting)

    assert result.created == 2
    assert result.created_tags == ["Q2"]
    assert result.created_domains == ["acme.co"]
    assert hosting.registered == ["acme.co"]
    assert repository.domains["ws_1"] == ["acme.co"]
    assert ("acme.co", "_root") in repository.links
    assert {(link.domain, link.key) for link in repository.imported_links()} == {
        ("acme.co", "spring"),
        ("dub.sh", "acme-spring"),
    }
    assert redis.values["import:csv:ws_1:job_1:created"] == "2"
    assert redis.sets["import:csv:ws_1:job_1:domains"] == {"acme.co", "dub.sh"}
    assert decode_failed(redis, "import:csv:ws_1:job_1:failed") == [
        {"domain": "dub.sh", "key": "pricing", "error": "Invalid key: pricing is reserved on dub.sh."}
    ]


def test_materialize_links_skips_existing_and_in_batch_duplicates() -> None:
    repository = FakeLinkRepository()
    redis = FakeRedis()
    hosting = FakeHosting()
    first = [LinkIntent(domain="dub.sh", key="a", url="https://example.com/a")]
    _materialize(first, repository=repository, redis=redis, hosting=hosting)

    again = [
        LinkIntent(domain="dub.sh", key="a", url="https://example.com/a"),
        LinkIntent(domain="dub.sh", key="b", url="https://example.com/b"),
        LinkIntent(domain="dub.sh", key="b", url="https://example.com/b-duplicate"),
    ]
    result = _materialize(again, repository=repository, redis=redis, hosting=hosting)

    assert result.created == 1
    assert result.skipped_existing == 2
    assert len(repository.imported_links()) == 2
    assert repository.links[("dub.sh", "b")].url == "https://example.com/b"
    assert redis.values["import:csv:ws_1:job_1:created"] == "2"


def test_materialize_links_survives_domain_registration_failures() -> None:
    repository = FakeLinkRepository()
    repository.fail_domain_create = True
    redis = FakeRedis()

    result = _materialize(
        [LinkIntent(domain="acme.co", key="x", url="https://example.com/x")],
        repository=repository,
        redis=redis,
        hosting=FakeHosting(fail=True),
    )

    assert result.created == 1
    assert ("acme.co", "x") in repository.links


def test_materialize_links_rejects_folders_on_free_plan() -> None:
    repository = FakeLinkRepository(plan="free")
    redis = FakeRedis()

    result = _materialize(
        [LinkIntent(domain="dub.sh", key="x", url="https://example.com/x")],
        repository=repository,
        redis=redis,
        hosting=FakeHosting(),
        payload=_payload(folder_id="fold_1"),
    )

    assert result.created == 0
    assert [link.error for link in result.error_links] == ["Folders are not available on the free plan."]
    assert repository.imported_links() == []


def test_materialize_links_with_no_intents_touches_nothing() -> None:
    repository = FakeLinkRepository()
    redis = FakeRedis()

    result = _materialize([], repository=repository, redis=redis, hosting=FakeHosting())

    assert result.created == 0
    assert repository.create_links_calls == 0
    assert redis.keys_with_prefix("import:csv:") == set()
