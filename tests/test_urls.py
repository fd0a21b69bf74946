from unittest.mock import patch

import pytest
from httpx import AsyncClient

from crud import MAX_CODE_ATTEMPTS
from models import Url


async def _shorten(client, headers=None, **body):
    body.setdefault("originalUrl", "https://example.com/page")
    return await client.post("/api/urls/shorten", json=body, headers=headers or {})


@pytest.mark.asyncio
async def test_shorten_anonymous(client: AsyncClient):
    response = await _shorten(client)
    assert response.status_code == 201
    body = response.json()
    assert body["success"] is True
    assert body["message"] == "URL shortened successfully"
    url = body["data"]["url"]
    assert url["userId"] is None
    assert url["customCode"] is False
    assert url["shortUrl"] == f"https://sho.rt/{url['shortCode']}"
    assert url["isActive"] is True
    assert url["tags"] == []


@pytest.mark.asyncio
async def test_shorten_authenticated_with_options(
    client: AsyncClient, auth_headers, registered_user
):
    response = await _shorten(
        client,
        headers=auth_headers,
        customCode="my_link-1",
        title="  Docs  ",
        description="Project docs",
        expiresAt="2099-01-01T00:00:00Z",
        maxClicks=5,
        tags=["docs", " work "],
    )
    assert response.status_code == 201
    url = response.json()["data"]["url"]
    assert url["shortCode"] == "my_link-1"
    assert url["customCode"] is True
    assert url["userId"] == registered_user["user"]["_id"]
    assert url["maxClicks"] == 5
    assert url["tags"] == ["docs", "work"]
    assert url["expiresAt"].startswith("2099-01-01T00:00:00")


@pytest.mark.asyncio
async def test_shorten_with_invalid_token_stays_anonymous(client: AsyncClient):
    response = await _shorten(client, headers={"Authorization": "Bearer garbage"})
    assert response.status_code == 201
    assert response.json()["data"]["url"]["userId"] is None


@pytest.mark.asyncio
async def test_custom_code_already_taken(client: AsyncClient, make_url):
    await make_url("taken")
    response = await _shorten(client, customCode="taken")
    assert response.status_code == 400
    assert response.json() == {"success": False, "message": "Custom code is already taken"}
    assert await Url.find(Url.short_code == "taken").count() == 1


@pytest.mark.asyncio
async def test_custom_code_match_is_exact(client: AsyncClient, make_url):
    await make_url("Taken")
    response = await _shorten(client, customCode="taken")
    assert response.status_code == 201


@pytest.mark.asyncio
async def test_generated_code_retries_on_collision(client: AsyncClient, make_url):
    await make_url("AAAAAA")
    codes = iter(["AAAAAA", "AAAAAA", "BBBBBB"])
    with patch("crud.get_code_generator", return_value=lambda: next(codes)):
        response = await _shorten(client)
    assert response.status_code == 201
    assert response.json()["data"]["url"]["shortCode"] == "BBBBBB"


@pytest.mark.asyncio
async def test_generated_code_exhaustion_is_server_error(client: AsyncClient, make_url):
    await make_url("AAAAAA")
    calls = []

    def always_taken():
        calls.append(1)
        return "AAAAAA"

    with patch("crud.get_code_generator", return_value=always_taken):
        response = await _shorten(client)
    assert response.status_code == 500
    assert response.json() == {
        "success": False,
        "message": "Unable to generate unique short code. Please try again.",
    }
    assert len(calls) == MAX_CODE_ATTEMPTS


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "body,field",
    [
        ({"originalUrl": "not a url"}, "originalUrl"),
        ({"originalUrl": "ftp://example.com"}, "originalUrl"),
        ({"originalUrl": "https://example.com/" + "a" * 2048}, "originalUrl"),
        ({"customCode": "ab"}, "customCode"),
        ({"customCode": "a" * 21}, "customCode"),
        ({"customCode": "bad code!"}, "customCode"),
        ({"title": "t" * 201}, "title"),
        ({"description": "d" * 501}, "description"),
        ({"maxClicks": 0}, "maxClicks"),
        ({"expiresAt": "tomorrow"}, "expiresAt"),
        ({"tags": "not-a-list"}, "tags"),
        ({"tags": ["x" * 51]}, "tags"),
    ],
)
async def test_shorten_validation_errors(client: AsyncClient, body, field):
    body.setdefault("originalUrl", "https://example.com")
    response = await client.post("/api/urls/shorten", json=body)
    assert response.status_code == 400
    payload = response.json()
    assert payload["success"] is False
    assert payload["message"] == "Validation failed"
    assert field in [error["field"].split(".")[0] for error in payload["errors"]]


@pytest.mark.asyncio
async def test_invalid_url_message(client: AsyncClient):
    response = await client.post("/api/urls/shorten", json={"originalUrl": "nope"})
    errors = response.json()["errors"]
    assert {"field": "originalUrl", "message": "Please provide a valid URL"} in errors


@pytest.mark.asyncio
async def test_my_urls_requires_auth(client: AsyncClient):
    response = await client.get("/api/urls/my-urls")
    assert response.status_code == 401
    assert response.json() == {
        "success": False,
        "message": "Access denied. No token provided.",
    }


@pytest.mark.asyncio
async def test_my_urls_pagination_and_ownership(
    client: AsyncClient, auth_headers, other_auth_headers
):
    for i in range(5):
        await _shorten(client, headers=auth_headers, customCode=f"mine-{i}")
    await _shorten(client, headers=other_auth_headers, customCode="theirs")
    await _shorten(client, customCode="anon-1")

    response = await client.get(
        "/api/urls/my-urls", params={"page": 2, "limit": 2}, headers=auth_headers
    )
    assert response.status_code == 200
    data = response.json()["data"]
    assert len(data["urls"]) == 2
    assert data["pagination"] == {
        "currentPage": 2,
        "totalPages": 3,
        "totalUrls": 5,
        "hasNext": True,
        "hasPrev": True,
    }
    assert all(u["shortCode"].startswith("mine-") for u in data["urls"])
    assert all("clickHistory" not in u for u in data["urls"])


@pytest.mark.asyncio
async def test_my_urls_search_and_sort(client: AsyncClient, auth_headers):
    await _shorten(client, headers=auth_headers, customCode="alpha", title="Python docs")
    await _shorten(client, headers=auth_headers, customCode="beta", originalUrl="https://python.org")
    await _shorten(client, headers=auth_headers, customCode="gamma", title="Rust book")

    response = await client.get(
        "/api/urls/my-urls",
        params={"search": "PYTHON", "sortBy": "shortCode", "sortOrder": "asc"},
        headers=auth_headers,
    )
    codes = [u["shortCode"] for u in response.json()["data"]["urls"]]
    assert codes == ["alpha", "beta"]


@pytest.mark.asyncio
async def test_my_urls_search_is_literal(client: AsyncClient, auth_headers):
    await _shorten(client, headers=auth_headers, customCode="plain", title="a+b")
    await _shorten(client, headers=auth_headers, customCode="other", title="aab")
    response = await client.get(
        "/api/urls/my-urls", params={"search": "a+b"}, headers=auth_headers
    )
    assert [u["shortCode"] for u in response.json()["data"]["urls"]] == ["plain"]


@pytest.mark.asyncio
async def test_my_urls_rejects_unknown_sort(client: AsyncClient, auth_headers):
    response = await client.get(
        "/api/urls/my-urls", params={"sortBy": "password"}, headers=auth_headers
    )
    assert response.status_code == 400
    assert response.json()["errors"][0]["field"] == "sortBy"


@pytest.mark.asyncio
async def test_get_url_details_owner_only(
    client: AsyncClient, auth_headers, other_auth_headers
):
    created = (await _shorten(client, headers=auth_headers, customCode="detail")).json()
    url_id = created["data"]["url"]["_id"]
    await client.get("/detail", follow_redirects=False)

    response = await client.get(f"/api/urls/{url_id}", headers=auth_headers)
    assert response.status_code == 200
    url = response.json()["data"]["url"]
    assert url["clicks"] == 1
    assert len(url["clickHistory"]) == 1

    response = await client.get(f"/api/urls/{url_id}", headers=other_auth_headers)
    assert response.status_code == 404
    assert response.json()["message"] == "URL not found"


@pytest.mark.asyncio
async def test_get_url_with_malformed_id(client: AsyncClient, auth_headers):
    response = await client.get("/api/urls/not-an-id", headers=auth_headers)
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_update_url(client: AsyncClient, auth_headers):
    created = (
        await _shorten(
            client,
            headers=auth_headers,
            customCode="upd",
            title="Old",
            maxClicks=3,
            expiresAt="2099-01-01T00:00:00",
        )
    ).json()
    url_id = created["data"]["url"]["_id"]

    response = await client.put(
        f"/api/urls/{url_id}",
        json={"title": "New", "isActive": False, "maxClicks": None, "tags": ["a"]},
        headers=auth_headers,
    )
    assert response.status_code == 200
    body = response.json()
    assert body["message"] == "URL updated successfully"
    url = body["data"]["url"]
    assert url["title"] == "New"
    assert url["isActive"] is False
    assert url["maxClicks"] is None
    assert url["tags"] == ["a"]
    # untouched fields survive
    assert url["expiresAt"].startswith("2099-01-01")

    response = await client.get("/upd", follow_redirects=False)
    assert response.status_code == 410


@pytest.mark.asyncio
async def test_update_null_clears_text_fields_but_not_tags(client: AsyncClient, auth_headers):
    created = (
        await _shorten(
            client,
            headers=auth_headers,
            customCode="updn",
            title="Old",
            description="Details",
            tags=["keep"],
        )
    ).json()
    url_id = created["data"]["url"]["_id"]

    response = await client.put(
        f"/api/urls/{url_id}",
        json={"title": None, "description": None, "tags": None, "isActive": None},
        headers=auth_headers,
    )
    assert response.status_code == 200
    url = response.json()["data"]["url"]
    assert url["title"] is None
    assert url["description"] is None
    assert url["tags"] == ["keep"]
    assert url["isActive"] is True


@pytest.mark.asyncio
async def test_update_url_validation(client: AsyncClient, auth_headers):
    created = (await _shorten(client, headers=auth_headers, customCode="updv")).json()
    url_id = created["data"]["url"]["_id"]
    response = await client.put(
        f"/api/urls/{url_id}", json={"maxClicks": -1}, headers=auth_headers
    )
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_update_url_not_owned(client: AsyncClient, auth_headers, other_auth_headers):
    created = (await _shorten(client, headers=auth_headers, customCode="upd2")).json()
    url_id = created["data"]["url"]["_id"]
    response = await client.put(
        f"/api/urls/{url_id}", json={"title": "Hijack"}, headers=other_auth_headers
    )
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_delete_url(client: AsyncClient, auth_headers):
    created = (await _shorten(client, headers=auth_headers, customCode="gone")).json()
    url_id = created["data"]["url"]["_id"]

    response = await client.delete(f"/api/urls/{url_id}", headers=auth_headers)
    assert response.status_code == 200
    assert response.json() == {"success": True, "message": "URL deleted successfully"}
    assert await Url.find_one(Url.short_code == "gone") is None

    response = await client.delete(f"/api/urls/{url_id}", headers=auth_headers)
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_bulk_delete_only_removes_own_urls(
    client: AsyncClient, auth_headers, other_auth_headers
):
    mine = [
        (await _shorten(client, headers=auth_headers, customCode=f"bulk-{i}")).json()
        for i in range(3)
    ]
    theirs = (await _shorten(client, headers=other_auth_headers, customCode="keep")).json()
    ids = [m["data"]["url"]["_id"] for m in mine[:2]] + [theirs["data"]["url"]["_id"]]

    response = await client.request(
        "DELETE", "/api/urls/bulk/delete", json={"urlIds": ids}, headers=auth_headers
    )
    assert response.status_code == 200
    assert response.json()["message"] == "2 URLs deleted successfully"
    assert response.json()["data"]["deletedCount"] == 2

    remaining = sorted(u.short_code for u in await Url.find_all().to_list())
    assert remaining == ["bulk-2", "keep"]


@pytest.mark.asyncio
@pytest.mark.parametrize("body", [{}, {"urlIds": []}, {"urlIds": ["nope"]}])
async def test_bulk_delete_validation(client: AsyncClient, auth_headers, body):
    response = await client.request(
        "DELETE", "/api/urls/bulk/delete", json=body, headers=auth_headers
    )
    assert response.status_code == 400
    assert response.json()["message"] == "Validation failed"
