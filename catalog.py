import logging
import re
import unicodedata
from types import MappingProxyType
from typing import Iterable, Mapping, Optional

from rapidfuzz.distance import Levenshtein

from schemas import TRANSFER_CATEGORY_ID, BankRecord, CategoryRecord

logger = logging.getLogger(__name__)

UNCATEGORIZED = "Uncategorized"
UNKNOWN_BANK = "Unknown"
DEFAULT_TRANSFER_NAME = "13-Traspasos intercompañia"

_NUMBER_PREFIX = re.compile(r"^(\d+)-")


def normalize_text(value: str) -> str:
    decomposed = unicodedata.normalize("NFD", value.lower())
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def category_sort_key(name: str) -> tuple:
    """Numbered names ("<N>-...") first by number, then the rest by name.

    Ties and unnumbered names compare accent- and case-insensitively, with
    the raw name as the final tie-breaker so the order is total.
    """
    match = _NUMBER_PREFIX.match(name)
    collated = normalize_text(name)
    if match:
        return (0, int(match.group(1)), collated, name)
    return (1, 0, collated, name)


def sort_category_names(names: Iterable[str]) -> list[str]:
    return sorted(names, key=category_sort_key)


def find_category_id(name: str, categories: Iterable[CategoryRecord]) -> str:
    search = normalize_text((name or "").strip())
    if not search:
        return ""
    categories = list(categories)

    partial = [c for c in categories if search in normalize_text(c.name)]
    for category in partial:
        if normalize_text(category.name) == search:
            return category.id
        if normalize_text(category.bare_name) == search:
            return category.id
    if partial:
        return partial[0].id

    best_distance: Optional[int] = None
    best: list[CategoryRecord] = []
    for category in categories:
        dist = int(Levenshtein.distance(search, normalize_text(category.bare_name)))
        if best_distance is None or dist < best_distance:
            best_distance = dist
            best = [category]
        elif dist == best_distance:
            best.append(category)
    if best_distance is not None and best_distance <= 1 and len(best) == 1:
        return best[0].id
    if best_distance is not None and best_distance <= 1:
        matches = sorted(c.name for c in best)
        logger.debug(f"category_lookup_ambiguous: name={name!r} matches={matches}")
    return ""


class CategoryCatalog:
    """Read-only id lookups over the guide and bank catalogs."""

    def __init__(
        self,
        categories: Iterable[CategoryRecord],
        banks: Iterable[BankRecord] = (),
    ) -> None:
        self._categories: Mapping[str, CategoryRecord] = MappingProxyType(
            {c.id: c for c in categories}
        )
        self._banks: Mapping[str, BankRecord] = MappingProxyType(
            {b.id: b for b in banks}
        )
        self._ids_by_name: Mapping[str, str] = MappingProxyType(
            {c.name: c.id for c in self._categories.values()}
        )

    @property
    def categories(self) -> list[CategoryRecord]:
        return list(self._categories.values())

    @property
    def banks(self) -> list[BankRecord]:
        return list(self._banks.values())

    def get(self, category_id: Optional[str]) -> Optional[CategoryRecord]:
        if not category_id:
            return None
        return self._categories.get(category_id)

    def name_of(self, category_id: Optional[str]) -> str:
        category = self.get(category_id)
        return category.name if category else UNCATEGORIZED

    def id_of(self, name: str) -> Optional[str]:
        return self._ids_by_name.get(name)

    def first_with_prefix(self, prefix: str) -> Optional[CategoryRecord]:
        for category in self._categories.values():
            if category.name.startswith(prefix):
                return category
        return None

    def find(self, name: str) -> str:
        return find_category_id(name, self._categories.values())

    def bank_name(self, bank_id: Optional[str]) -> str:
        bank = self._banks.get(bank_id or "")
        return bank.name if bank else UNKNOWN_BANK

    def transfer_name(self, category_id: str = TRANSFER_CATEGORY_ID) -> str:
        category = self.get(category_id)
        return category.name if category else DEFAULT_TRANSFER_NAME
