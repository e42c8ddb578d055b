"""Per-type behaviour of the object repositories.

Companies, Interactions and Studies differ only in which fields callers
may update, which other containers hold links to them and what a delete
drags along with it. Those differences are data, captured by
``ContainerPolicy``; the repository itself is the same class for every
type.
"""

from __future__ import annotations

from dataclasses import dataclass

LINK_FIELDS: dict[str, str] = {
    "Companies": "linked_companies",
    "Interactions": "linked_interactions",
    "Studies": "linked_studies",
}


@dataclass(frozen=True)
class ContainerPolicy:
    """Rules for one object type.

    Attributes:
        name: Container name, also the object type.
        whitelist: Fields a non-system update may set.
        cascades: Containers whose linked objects are deleted along with an
            object of this type, unless orphans are allowed.
        unlink_from: Containers whose link maps are scrubbed of a deleted
            object's name.
        content_field: Field holding the path of a content file stored next
            to the container, removed together with the object.
    """

    name: str
    whitelist: frozenset[str]
    cascades: tuple[str, ...] = ()
    unlink_from: tuple[str, ...] = ()
    content_field: str | None = None

    @property
    def link_field(self) -> str:
        """Field other objects use to link to objects of this type."""
        return LINK_FIELDS[self.name]

    def delete_containers(self, allow_orphans: bool = False) -> tuple[str, ...]:
        """Containers a delete has to catch, own container first."""
        if allow_orphans:
            return (self.name,)
        names = [self.name]
        for other in self.cascades + self.unlink_from:
            if other not in names:
                names.append(other)
        return tuple(names)

    def rejected_fields(self, fields: set[str] | list[str]) -> list[str]:
        return sorted(f for f in fields if f not in self.whitelist)


COMPANIES = ContainerPolicy(
    name="Companies",
    whitelist=frozenset({
        "description",
        "company_type",
        "url",
        "role",
        "wikipedia_url",
        "status",
        "region",
        "country",
        "city",
        "state_province",
        "zip_postal",
        "street_address",
        "latitude",
        "longitude",
        "phone",
        "google_maps_url",
        "google_news_url",
        "google_finance_url",
        "google_patents_url",
        "cik",
        "stock_symbol",
        "stock_exchange",
        "recent_10k_url",
        "recent_10q_url",
        "firmographic_url",
        "filings_url",
        "owner_transactions",
        "industry",
        "industry_code",
        "industry_group_code",
        "industry_group_description",
        "major_group_code",
        "major_group_description",
        "logo_url",
    }),
    cascades=("Interactions",),
    unlink_from=("Interactions",),
)

INTERACTIONS = ContainerPolicy(
    name="Interactions",
    whitelist=frozenset({
        "status",
        "content_type",
        "file_size",
        "reading_time",
        "word_count",
        "page_count",
        "description",
        "abstract",
        "region",
        "country",
        "city",
        "state_province",
        "zip_postal",
        "street_address",
        "latitude",
        "longitude",
        "public",
        "groups",
    }),
    unlink_from=("Companies",),
    content_field="url",
)

STUDIES = ContainerPolicy(
    name="Studies",
    whitelist=frozenset({"description", "status", "public", "groups"}),
    unlink_from=("Companies", "Interactions"),
)

POLICIES: dict[str, ContainerPolicy] = {
    policy.name: policy for policy in (COMPANIES, INTERACTIONS, STUDIES)
}


def get_policy(name: str) -> ContainerPolicy:
    """Look up a policy by container name, case-insensitively."""
    for key, policy in POLICIES.items():
        if key.lower() == name.lower():
            return policy
    raise KeyError(f"Unknown container: {name}. Known containers: {', '.join(POLICIES)}")
