"""Catalog collaborator: priced, bookable services for a destination city.

Also hosts the pure scoring unit used by guided flows, the local edit
interpreter and the planner fallback to find catalog items by keyword and
category. It does not choose a day's plan.
"""

import asyncio
import json
import re
from pathlib import Path
from typing import Protocol

import httpx
import structlog
import yaml
from pydantic import BaseModel, ConfigDict, ValidationError, field_validator, model_validator
from pydantic.alias_generators import to_camel

from cli.retry import http_retry
from observability import metrics

logger = structlog.get_logger().bind(source="catalog")

SERVICE_CATEGORIES = [
    "Restaurant",
    "Bar",
    "Night Club",
    "Daytime",
    "Transportation",
    "Strip Club",
    "Package",
    "Catering",
    "Accommodation",
]

# Interest phrases that warrant an extra keyword search beyond the category sweep
KEYWORD_SEARCHES = {
    "strip club": "strip",
    "golf": "golf",
    "boat": "boat",
    "lake": "boat",
    "steakhouse": "steak",
    "steak": "steak",
    "hibachi": "hibachi",
    "hunting": "hunting",
    "shooting": "shooting",
}

# Free-text hints that name a category without using its catalog label
CATEGORY_ALIASES = {
    "nightclub": "night_club",
    "club": "night_club",
    "dance": "night_club",
    "strip": "strip_club",
    "gentlemen": "strip_club",
    "dinner": "restaurant",
    "lunch": "restaurant",
    "brunch": "restaurant",
    "steakhouse": "restaurant",
    "food": "restaurant",
    "drinks": "bar",
    "pub": "bar",
    "activity": "daytime",
    "activities": "daytime",
    "day": "daytime",
    "ride": "transportation",
    "pickup": "transportation",
    "limo": "transportation",
    "bus": "transportation",
    "hotel": "accommodation",
}


class CatalogError(Exception):
    """Catalog lookup failed."""


def normalize(text) -> str:
    """Lowercase, collapse every non-alphanumeric run to one space."""
    return re.sub(r"[^a-z0-9]+", " ", str(text or "").lower()).strip()


def normalize_category(raw) -> str:
    """'Night Club' -> 'night_club'."""
    return normalize(raw).replace(" ", "_")


def resolve_category_hint(hint: str | None) -> str | None:
    if not hint:
        return None
    key = normalize_category(hint)
    return CATEGORY_ALIASES.get(key, key)


def category_matches(category: str | None, hint: str | None) -> bool:
    """Substring match in either direction on normalized forms."""
    resolved = resolve_category_hint(hint)
    if not resolved or not category:
        return False
    cat = normalize_category(category)
    return resolved in cat or cat in resolved


class CatalogItem(BaseModel):
    """A bookable service as returned by the catalog."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    id: str
    name: str
    category: str = ""
    description: str = ""
    itinerary_name: str | None = None
    price_cad: float | None = None
    price_usd: float | None = None
    duration_hours: float | None = None
    image_url: str | None = None
    city: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _accept_type_as_category(cls, data):
        if isinstance(data, dict) and not data.get("category") and data.get("type"):
            data = {**data, "category": data["type"]}
        return data

    @field_validator("id", mode="before")
    @classmethod
    def _stringify_id(cls, v):
        if v is None or str(v).strip() == "":
            raise ValueError("catalog item needs an id")
        return str(v)

    @field_validator("category", mode="before")
    @classmethod
    def _normalize_category(cls, v):
        return normalize_category(v)

    @field_validator("price_cad", "price_usd", "duration_hours", mode="before")
    @classmethod
    def _blank_number(cls, v):
        if v in ("", None):
            return None
        return v

    @property
    def display_name(self) -> str:
        return self.itinerary_name or self.name

    @property
    def search_text(self) -> str:
        return normalize(f"{self.name} {self.itinerary_name or ''} {self.category} {self.description}")

    def to_dict(self) -> dict:
        return self.model_dump(by_alias=True)


def parse_items(raw: list) -> list[CatalogItem]:
    """Validate raw dicts, skipping (and logging) malformed entries."""
    items = []
    for entry in raw or []:
        try:
            items.append(CatalogItem.model_validate(entry))
        except ValidationError as e:
            logger.warning("catalog.item_skipped", error=str(e).splitlines()[0])
    return items


# -- Pure scoring -----------------------------------------------------------


def score_item(item: CatalogItem, keywords: list[str], category_hint: str | None = None) -> float:
    """Relevance of ``item`` for the keywords and optional category hint.

    Category match +3; each keyword found in the name +1, found only in
    category/description +0.5; having a price +0.1 and a duration +0.05 so
    bookable, fully-described items win ties.
    """
    score = 0.0
    if category_hint and category_matches(item.category, category_hint):
        score += 3.0
    name_text = normalize(f"{item.name} {item.itinerary_name or ''}")
    other_text = normalize(f"{item.category} {item.description}")
    for keyword in keywords:
        kw = normalize(keyword)
        if len(kw) < 3:
            continue
        if kw in name_text:
            score += 1.0
        elif kw in other_text:
            score += 0.5
    if item.price_usd is not None or item.price_cad is not None:
        score += 0.1
    if item.duration_hours:
        score += 0.05
    return score


def _price(item: CatalogItem) -> float:
    price = item.price_usd if item.price_usd is not None else item.price_cad
    return price if price is not None else float("inf")


def rank_items(
    items: list[CatalogItem],
    keywords: list[str],
    category_hint: str | None = None,
    exclude_ids: set[str] | frozenset = frozenset(),
) -> list[tuple[float, CatalogItem]]:
    """Score every item, best first; ties broken by lower price then catalog order."""
    scored = [
        (score_item(item, keywords, category_hint), index, item)
        for index, item in enumerate(items)
        if item.id not in exclude_ids
    ]
    scored.sort(key=lambda t: (-t[0], _price(t[2]), t[1]))
    return [(score, item) for score, _, item in scored]


def best_match(
    items: list[CatalogItem],
    keywords: list[str],
    category_hint: str | None = None,
    exclude_ids: set[str] | frozenset = frozenset(),
    min_score: float = 0.5,
) -> CatalogItem | None:
    """Best-scoring item above ``min_score``.

    With a category hint, candidates are restricted to that category when
    any exist.
    """
    pool = items
    if category_hint:
        in_category = [i for i in items if category_matches(i.category, category_hint)]
        if in_category:
            pool = in_category
    ranked = rank_items(pool, keywords, category_hint, exclude_ids)
    if not ranked or ranked[0][0] < min_score:
        return None
    return ranked[0][1]


def find_by_name(items: list[CatalogItem], name: str | None) -> CatalogItem | None:
    """Exact normalized match on name or itinerary name."""
    target = normalize(name)
    if not target:
        return None
    for item in items:
        if normalize(item.name) == target or normalize(item.itinerary_name) == target:
            return item
    return None


def find_by_id(items: list[CatalogItem], service_id: str | None) -> CatalogItem | None:
    if not service_id:
        return None
    for item in items:
        if item.id == str(service_id):
            return item
    return None


def top_by_intent(
    items: list[CatalogItem],
    category_hint: str | None,
    keywords: list[str],
    limit: int = 5,
) -> list[CatalogItem]:
    """Items for an 'options' question, restricted to the category when it has any."""
    pool = items
    if category_hint:
        pool = [i for i in items if category_matches(i.category, category_hint)] or items
    return [item for _, item in rank_items(pool, keywords, category_hint)[:limit]]


def group_by_category(items: list[CatalogItem]) -> dict[str, list[CatalogItem]]:
    grouped: dict[str, list[CatalogItem]] = {}
    for item in items:
        grouped.setdefault(item.category or "other", []).append(item)
    return grouped


# -- Clients ----------------------------------------------------------------


class CatalogClient(Protocol):
    async def search(
        self, city: str, category: str | None = None, keyword: str | None = None
    ) -> list[CatalogItem]: ...


class StaticCatalog:
    """Catalog served from an in-memory list (fixture files, tests, demos)."""

    def __init__(self, items: list[CatalogItem]):
        self.items = list(items)

    @classmethod
    def from_file(cls, path: str | Path) -> "StaticCatalog":
        """Load a YAML or JSON list of items (or ``{"items": [...]}``)."""
        text = Path(path).expanduser().read_text()
        try:
            raw = yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise CatalogError(f"Invalid catalog file {path}: {e}") from e
        if isinstance(raw, dict):
            raw = raw.get("items", [])
        return cls(parse_items(raw))

    async def search(
        self, city: str, category: str | None = None, keyword: str | None = None
    ) -> list[CatalogItem]:
        results = []
        for item in self.items:
            if item.city and normalize(item.city) != normalize(city):
                continue
            if category and normalize_category(category) != item.category:
                continue
            if keyword and normalize(keyword) not in item.search_text:
                continue
            results.append(item)
        return results


class HttpCatalogClient:
    """REST catalog: ``GET {base_url}/services?city=&category=&keyword=``."""

    def __init__(
        self,
        base_url: str,
        api_key: str | None = None,
        timeout: float = 15.0,
        max_results: int = 50,
        client: httpx.AsyncClient | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.max_results = max_results
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        self.client = client or httpx.AsyncClient(timeout=timeout, headers=headers)

    @http_retry(exceptions=(httpx.HTTPStatusError, httpx.ConnectError, httpx.ReadTimeout))
    async def _get(self, params: dict) -> list:
        response = await self.client.get(f"{self.base_url}/services", params=params)
        response.raise_for_status()
        data = response.json()
        if isinstance(data, dict):
            data = data.get("items") or data.get("results") or []
        return data

    async def search(
        self, city: str, category: str | None = None, keyword: str | None = None
    ) -> list[CatalogItem]:
        params = {"city": city, "limit": self.max_results}
        if category:
            params["category"] = category
        if keyword:
            params["keyword"] = keyword
        try:
            with metrics.timer("catalog.search"):
                raw = await self._get(params)
        except (httpx.HTTPError, json.JSONDecodeError) as e:
            raise CatalogError(f"Catalog search failed for {city}: {e}") from e
        return parse_items(raw)

    async def aclose(self):
        await self.client.aclose()


def _keyword_searches(interests: list[str]) -> list[str]:
    text = normalize(" ".join(str(i) for i in interests or []))
    keywords = []
    for phrase, keyword in KEYWORD_SEARCHES.items():
        if phrase in text and keyword not in keywords:
            keywords.append(keyword)
    return keywords


async def load_destination_catalog(
    client: CatalogClient,
    city: str,
    interests: list[str] | None = None,
    concurrency: int = 4,
) -> list[CatalogItem]:
    """Sweep every category plus interest keywords; dedupe by id.

    Never raises: failed searches are logged and skipped, so the result may
    be empty.
    """
    if not city:
        return []
    semaphore = asyncio.Semaphore(concurrency)

    async def _search(category=None, keyword=None):
        async with semaphore:
            return await client.search(city, category=category, keyword=keyword)

    tasks = [_search(category=c) for c in SERVICE_CATEGORIES]
    tasks += [_search(keyword=k) for k in _keyword_searches(interests or [])]
    results = await asyncio.gather(*tasks, return_exceptions=True)

    seen: dict[str, CatalogItem] = {}
    failures = 0
    for result in results:
        if isinstance(result, BaseException):
            failures += 1
            logger.warning("catalog.search_failed", city=city, error=str(result))
            continue
        for item in result:
            seen.setdefault(item.id, item)

    logger.info("catalog.loaded", city=city, items=len(seen), failed_searches=failures)
    return list(seen.values())
