"""Test fixtures: in-memory catalog, owners and marketplace payload builders."""

from datetime import datetime, timedelta, timezone

import pytest

from pricewatch.database import Base, build_engine, build_session_factory
from pricewatch.models import Owner, TrackedQuery
from pricewatch.store import CatalogStore


@pytest.fixture()
def engine():
    engine = build_engine("sqlite:///:memory:")
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture()
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture()
def store(session_factory):
    return CatalogStore(session_factory)


@pytest.fixture()
def owner(db):
    owner = Owner(
        name="alice",
        email="alice@example.com",
        access_token="access-token-1234",
        refresh_token="refresh-token-5678",
        token_expires_at=datetime.now(timezone.utc) + timedelta(hours=2),
    )
    db.add(owner)
    db.commit()
    db.refresh(owner)
    return owner


def make_query(db, owner_id: int, name: str = "switch", keywords: str = "nintendo switch", **kwargs):
    query = TrackedQuery(owner_id=owner_id, name=name, keywords=keywords, **kwargs)
    db.add(query)
    db.commit()
    db.refresh(query)
    return query


def item_summary(item_id: str, price: float, currency: str = "USD", title: str | None = None) -> dict:
    """One entry of a Browse API ``itemSummaries`` array."""
    return {
        "itemId": item_id,
        "title": title or f"Listing {item_id}",
        "price": {"value": f"{price:.2f}", "currency": currency},
        "itemWebUrl": f"https://www.ebay.com/itm/{item_id}",
        "image": {"imageUrl": f"https://i.ebayimg.com/{item_id}.jpg"},
        "condition": "New",
        "seller": {"username": "seller1"},
        "buyingOptions": ["FIXED_PRICE"],
    }


def search_payload(summaries: list[dict], total: int | None = None, offset: int = 0, limit: int = 100) -> dict:
    return {
        "itemSummaries": summaries,
        "total": len(summaries) if total is None else total,
        "offset": offset,
        "limit": limit,
    }
