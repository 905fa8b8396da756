"""
Working-set selection for callers that do not bring their own eligibility policy.

The coordinator never calls this module; it receives the already filtered
sources and treats the pinned-id set as ordering data only.
"""

from collections.abc import Collection, Sequence

from sources.base_source import BaseSource


def enabled_sources(
    catalogue: Sequence[BaseSource],
    enabled_languages: Collection[str],
    hidden_ids: Collection[str] = (),
    pinned_ids: Collection[str] = (),
    pinned_only: bool = False,
) -> list[BaseSource]:
    """
    Visible sources in enabled languages, ordered by "(language) name" with pinned first.

    Args:
        catalogue: Every installed source
        enabled_languages: Language tags the user searches in
        hidden_ids: Source ids the user hid
        pinned_ids: Source ids the user pinned
        pinned_only: Keep pinned sources only
    """
    visible = sorted(
        (
            source
            for source in catalogue
            if source.lang in enabled_languages and source.source_id not in hidden_ids
        ),
        key=lambda source: f"({source.lang}) {source.name}",
    )
    if pinned_only:
        return [source for source in visible if source.source_id in pinned_ids]
    # sorted() is stable, so the language/name order holds within each group
    return sorted(visible, key=lambda source: source.source_id not in pinned_ids)


def select_sources(
    catalogue: Sequence[BaseSource],
    enabled_languages: Collection[str],
    hidden_ids: Collection[str] = (),
    pinned_ids: Collection[str] = (),
    pinned_only: bool = False,
    extension_sources: Sequence[BaseSource] | None = None,
    override: Sequence[BaseSource] | None = None,
) -> list[BaseSource]:
    """
    Sources to query for a federated search.

    Precedence:
    1. ``override`` when given, unchanged
    2. ``extension_sources`` restricted to enabled sources, when that leaves any
    3. enabled sources (pinned only when ``pinned_only``)
    """
    if override is not None:
        return list(override)

    enabled = enabled_sources(catalogue, enabled_languages, hidden_ids, pinned_ids, pinned_only)

    if extension_sources:
        enabled_ids = {source.source_id for source in enabled}
        restricted = [source for source in extension_sources if source.source_id in enabled_ids]
        if restricted:
            return restricted

    return enabled
