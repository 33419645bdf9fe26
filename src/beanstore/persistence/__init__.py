"""Bean persistence: the object database, associations, duplication and finders."""

from beanstore.persistence.associations import (
    AssociationManager,
    link_columns,
    link_pair,
    link_table,
)
from beanstore.persistence.duplication import DuplicationManager, DuplicationTrail
from beanstore.persistence.finder import Finder
from beanstore.persistence.oodb import OODB

__all__ = [
    "AssociationManager",
    "DuplicationManager",
    "DuplicationTrail",
    "Finder",
    "OODB",
    "link_columns",
    "link_pair",
    "link_table",
]
