from conftest import FakeSource

from orchestrator.working_set import enabled_sources, select_sources


def ids(sources):
    return [source.source_id for source in sources]


CATALOGUE = [
    FakeSource("1", name="Mango", lang="en"),
    FakeSource("2", name="Apple", lang="en"),
    FakeSource("3", name="Birne", lang="de"),
    FakeSource("4", name="Kiwi", lang="fr"),
    FakeSource("5", name="Cherry", lang="en"),
]


def test_filters_languages_and_hidden():
    result = enabled_sources(CATALOGUE, {"en", "de"}, hidden_ids={"5"})

    # "(de) Birne" < "(en) Apple" < "(en) Mango"
    assert ids(result) == ["3", "2", "1"]


def test_pinned_sorted_first_keeping_order():
    result = enabled_sources(CATALOGUE, {"en", "de"}, pinned_ids={"1", "5"})

    assert ids(result) == ["5", "1", "3", "2"]


def test_pinned_only():
    result = enabled_sources(CATALOGUE, {"en", "de", "fr"}, pinned_ids={"4", "2"}, pinned_only=True)

    assert ids(result) == ["2", "4"]


def test_override_wins():
    override = [CATALOGUE[3]]

    assert select_sources(CATALOGUE, {"en"}, override=override) == override


def test_extension_filter_restricted_to_enabled():
    extension = [CATALOGUE[0], CATALOGUE[3]]

    result = select_sources(CATALOGUE, {"en"}, extension_sources=extension)

    assert ids(result) == ["1"]


def test_extension_filter_falls_back_when_nothing_enabled():
    extension = [CATALOGUE[3]]

    result = select_sources(CATALOGUE, {"en"}, hidden_ids={"5"}, extension_sources=extension)

    assert ids(result) == ["2", "1"]
