"""Click analytics computed on demand with aggregation pipelines.

Per-click figures come from each record's retained click history, so they
cover at most models.MAX_CLICK_HISTORY recent clicks per URL. Totals come
from the click counters.
"""

from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from beanie import PydanticObjectId

from models import Url, utcnow
from schemas import serialize_click

RECENT_DAYS = 30
REALTIME_HOURS = 24
TOP_URLS_LIMIT = 5
TOP_BUCKETS_LIMIT = 10
RECENT_CLICKS_LIMIT = 50

DAY_KEY = {
    "year": {"$year": "$click_history.timestamp"},
    "month": {"$month": "$click_history.timestamp"},
    "day": {"$dayOfMonth": "$click_history.timestamp"},
}
HOUR_KEY = dict(DAY_KEY, hour={"$hour": "$click_history.timestamp"})


def _clicks_pipeline(match: Dict[str, Any], since: Optional[datetime] = None) -> List[dict]:
    pipeline = [{"$match": match}, {"$unwind": "$click_history"}]
    if since is not None:
        pipeline.append({"$match": {"click_history.timestamp": {"$gte": since}}})
    return pipeline


async def _aggregate(pipeline: List[dict]) -> List[dict]:
    return await Url.aggregate(pipeline).to_list()


async def count_clicks(match: Dict[str, Any], since: Optional[datetime] = None) -> int:
    result = await _aggregate(
        _clicks_pipeline(match, since)
        + [{"$group": {"_id": None, "count": {"$sum": 1}}}]
    )
    return result[0]["count"] if result else 0


async def clicks_by_day(match: Dict[str, Any], since: Optional[datetime] = None) -> List[dict]:
    rows = await _aggregate(
        _clicks_pipeline(match, since)
        + [
            {"$group": {"_id": DAY_KEY, "clicks": {"$sum": 1}}},
            {"$sort": {"_id.year": 1, "_id.month": 1, "_id.day": 1}},
        ]
    )
    return [
        {
            "date": "%04d-%02d-%02d" % (row["_id"]["year"], row["_id"]["month"], row["_id"]["day"]),
            "clicks": row["clicks"],
        }
        for row in rows
    ]


async def clicks_by_hour(match: Dict[str, Any], since: datetime) -> List[dict]:
    rows = await _aggregate(
        _clicks_pipeline(match, since)
        + [
            {"$group": {"_id": HOUR_KEY, "clicks": {"$sum": 1}}},
            {"$sort": {"_id.year": 1, "_id.month": 1, "_id.day": 1, "_id.hour": 1}},
        ]
    )
    return [
        {
            "hour": datetime(
                row["_id"]["year"], row["_id"]["month"], row["_id"]["day"], row["_id"]["hour"]
            ).isoformat() + "Z",
            "clicks": row["clicks"],
        }
        for row in rows
    ]


async def clicks_by_field(
    match: Dict[str, Any], field: str, limit: Optional[int] = None
) -> List[dict]:
    """Click counts grouped by a ClickRecord field, most clicked first."""
    pipeline = _clicks_pipeline(match) + [
        {"$group": {"_id": f"$click_history.{field}", "clicks": {"$sum": 1}}},
        {"$sort": {"clicks": -1, "_id": 1}},
    ]
    if limit:
        pipeline.append({"$limit": limit})
    return await _aggregate(pipeline)


async def total_clicks(user_id: PydanticObjectId) -> int:
    result = await _aggregate(
        [
            {"$match": {"user_id": user_id}},
            {"$group": {"_id": None, "total": {"$sum": "$clicks"}}},
        ]
    )
    return result[0]["total"] if result else 0


async def overview(user_id: PydanticObjectId) -> Dict[str, Any]:
    now = utcnow()
    since = now - timedelta(days=RECENT_DAYS)
    match = {"user_id": user_id}

    top_urls = (
        await Url.find(match).sort("-clicks").limit(TOP_URLS_LIMIT).to_list()
    )

    return {
        "overview": {
            "totalUrls": await Url.find(match).count(),
            "activeUrls": await Url.find(dict(match, is_active=True)).count(),
            "expiredUrls": await Url.find(
                dict(match, expires_at={"$lt": now})
            ).count(),
            "totalClicks": await total_clicks(user_id),
            "recentClicks": await count_clicks(match, since),
        },
        "topUrls": [
            {
                "_id": str(url.id),
                "originalUrl": url.original_url,
                "shortCode": url.short_code,
                "clicks": url.clicks,
                "title": url.title,
                "createdAt": url.created_at,
            }
            for url in top_urls
        ],
        "clicksByDay": await clicks_by_day(match, since),
        "clicksByCountry": await clicks_by_field(match, "country", TOP_BUCKETS_LIMIT),
        "clicksByReferer": await clicks_by_field(match, "referer", TOP_BUCKETS_LIMIT),
    }


async def url_stats(url: Url) -> Dict[str, Any]:
    match = {"_id": url.id}
    recent = sorted(url.click_history, key=lambda c: c.timestamp, reverse=True)
    return {
        "url": {
            "id": str(url.id),
            "originalUrl": url.original_url,
            "shortCode": url.short_code,
            "shortUrl": url.short_url,
            "title": url.title,
            "description": url.description,
            "clicks": url.clicks,
            "isActive": url.is_active,
            "expiresAt": url.expires_at,
            "maxClicks": url.max_clicks,
            "createdAt": url.created_at,
        },
        "clicksByDay": await clicks_by_day(match),
        "clicksByCountry": await clicks_by_field(match, "country"),
        "clicksByReferer": await clicks_by_field(match, "referer"),
        "recentClicks": [serialize_click(c) for c in recent[:RECENT_CLICKS_LIMIT]],
    }


async def realtime(user_id: PydanticObjectId) -> Dict[str, Any]:
    since = utcnow() - timedelta(hours=REALTIME_HOURS)
    match = {"user_id": user_id}

    top = await _aggregate(
        _clicks_pipeline(match, since)
        + [
            {
                "$group": {
                    "_id": "$_id",
                    "shortCode": {"$first": "$short_code"},
                    "originalUrl": {"$first": "$original_url"},
                    "title": {"$first": "$title"},
                    "clicks": {"$sum": 1},
                }
            },
            {"$sort": {"clicks": -1}},
            {"$limit": TOP_BUCKETS_LIMIT},
        ]
    )

    return {
        "recentClicks": await count_clicks(match, since),
        "clicksByHour": await clicks_by_hour(match, since),
        "topUrlsLast24h": [dict(row, _id=str(row["_id"])) for row in top],
    }
