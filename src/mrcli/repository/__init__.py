"""Object repositories: Companies, Interactions and Studies.

Example:
    >>> from mrcli.repository import create_repository
    >>> from mrcli.stores.backends import MemoryObjectStore
    >>>
    >>> companies = create_repository("Companies", MemoryObjectStore())
    >>> companies.create_obj([{"name": "Acme"}])
"""

from mrcli.repository.container import (
    ContainerRepository,
    MergePlan,
    OperationState,
    WriteOperation,
)
from mrcli.repository.factory import (
    CONTAINERS,
    create_catcher,
    create_containers,
    create_repository,
)
from mrcli.repository.policies import (
    COMPANIES,
    INTERACTIONS,
    LINK_FIELDS,
    POLICIES,
    STUDIES,
    ContainerPolicy,
    get_policy,
)

__all__ = [
    "ContainerRepository",
    "MergePlan",
    "OperationState",
    "WriteOperation",
    "CONTAINERS",
    "create_catcher",
    "create_containers",
    "create_repository",
    "COMPANIES",
    "INTERACTIONS",
    "STUDIES",
    "LINK_FIELDS",
    "POLICIES",
    "ContainerPolicy",
    "get_policy",
]
