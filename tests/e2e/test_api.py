import io

import pytest
from PIL import Image


async def upload(client, data: bytes, filename="photo.jpg", content_type="image/jpeg"):
    return await client.post(
        "/api/v1/images/upload",
        files={"image": (filename, data, content_type)}
    )


@pytest.mark.asyncio
async def test_health_check(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


@pytest.mark.asyncio
async def test_ready_without_generation(client):
    response = await client.get("/ready")
    assert response.status_code == 200
    data = response.json()
    assert data["ready"] is True
    assert data["checks"]["generation"] is False


@pytest.mark.asyncio
async def test_list_effects_hides_directives(client):
    response = await client.get("/api/v1/effects")
    assert response.status_code == 200
    effects = response.json()["effects"]
    ids = [effect["id"] for effect in effects]
    assert "vintage_filter" in ids
    assert "anime_style" in ids
    for effect in effects:
        assert "directive" not in effect
        assert effect["display_name"]


@pytest.mark.asyncio
async def test_upload_apply_poll_fetch_with_fallback(client, image_factory, poll):
    # Upload
    response = await upload(client, image_factory((500, 500), "JPEG"))
    assert response.status_code == 201
    uploaded = response.json()
    assert uploaded["width"] == 500
    assert uploaded["format"] == "jpeg"

    # Submit
    response = await client.post(
        "/api/v1/effects/apply",
        json={"image_id": uploaded["image_id"], "effect_id": "vintage_filter"}
    )
    assert response.status_code == 202
    submitted = response.json()
    assert submitted["status"] == "pending"
    assert submitted["poll_url"] == f"/api/v1/status/{submitted['job_id']}"

    # Poll
    status = await poll(client, submitted["job_id"])
    assert status["status"] == "completed"
    assert status["progress"] == 100
    assert status["method"] == "fallback"
    assert status["error_message"] is None
    assert status["result_url"] == f"/api/v1/images/file/{status['result_image_id']}"

    # Fetch
    response = await client.get(status["result_url"])
    assert response.status_code == 200
    assert response.headers["content-type"] == "image/jpeg"
    assert "immutable" in response.headers["cache-control"]
    with Image.open(io.BytesIO(response.content)) as result:
        assert result.format == "JPEG"
        assert max(result.size) <= 2048

    # Terminal status is stable
    again = (await client.get(f"/api/v1/status/{submitted['job_id']}")).json()
    assert again == status


@pytest.mark.asyncio
async def test_generated_result(generative_client, image_factory, poll):
    uploaded = (await upload(generative_client, image_factory((400, 300), "PNG"), "photo.png", "image/png")).json()

    response = await generative_client.post(
        "/api/v1/effects/apply",
        json={"image_id": uploaded["image_id"], "effect_id": "picasso_style", "intensity": 0.3}
    )
    assert response.status_code == 202

    status = await poll(generative_client, response.json()["job_id"])
    assert status["status"] == "completed"
    assert status["method"] == "generated"

    response = await generative_client.get(status["result_url"])
    assert response.status_code == 200
    assert response.headers["content-type"] == "image/jpeg"


@pytest.mark.asyncio
async def test_large_upload_is_downscaled(client, image_factory):
    response = await upload(client, image_factory((3000, 2000), "PNG"), "big.png", "image/png")
    assert response.status_code == 201
    data = response.json()
    assert max(data["width"], data["height"]) == 2048
    assert data["format"] == "jpeg"


@pytest.mark.asyncio
async def test_upload_invalid_image(client):
    response = await upload(client, b"this is not an image", "notes.jpg")
    assert response.status_code == 400
    assert response.json()["error_code"] == "InvalidImage"


@pytest.mark.asyncio
async def test_upload_unsupported_format(client, image_factory):
    response = await upload(client, image_factory((20, 20), "GIF"), "anim.gif", "image/gif")
    assert response.status_code == 415
    assert response.json()["error_code"] == "UnsupportedFormat"


@pytest.mark.asyncio
async def test_apply_unknown_effect(client, image_factory):
    uploaded = (await upload(client, image_factory((50, 50)))).json()

    response = await client.post(
        "/api/v1/effects/apply",
        json={"image_id": uploaded["image_id"], "effect_id": "does_not_exist"}
    )
    assert response.status_code == 400
    assert response.json()["error_code"] == "UnknownEffect"


@pytest.mark.asyncio
async def test_apply_unknown_image(client):
    response = await client.post(
        "/api/v1/effects/apply",
        json={"image_id": "no-such-image", "effect_id": "vintage_filter"}
    )
    assert response.status_code == 404
    assert response.json()["error_code"] == "UnknownImage"


@pytest.mark.asyncio
async def test_apply_rejects_out_of_range_intensity(client, image_factory):
    uploaded = (await upload(client, image_factory((50, 50)))).json()

    response = await client.post(
        "/api/v1/effects/apply",
        json={"image_id": uploaded["image_id"], "effect_id": "vintage_filter", "intensity": 1.5}
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_status_unknown_job(client):
    response = await client.get("/api/v1/status/not-a-job")
    assert response.status_code == 404
    data = response.json()
    assert data["error_code"] == "JobNotFound"
    assert data["code"] == 404


@pytest.mark.asyncio
async def test_fetch_unknown_image(client):
    response = await client.get("/api/v1/images/file/not-an-image")
    assert response.status_code == 404
    assert response.json()["error_code"] == "NotFound"


@pytest.mark.asyncio
async def test_metrics_endpoint(client):
    await client.get("/health")
    response = await client.get("/api/v1/metrics")
    assert response.status_code == 200
    assert "http_requests_total" in response.text
    assert "effect_generation_calls_total" in response.text
