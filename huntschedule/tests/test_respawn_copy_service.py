"""
Tests for copying a server's respawns onto another server.
"""

import pytest

from huntschedule.services import catalog_service, request_service, respawn_copy_service
from huntschedule.services.errors import ErrorCode, NotFoundError, ValidationError


@pytest.mark.asyncio
async def test_copy_without_overwrite_appends(db_session, world):
    await catalog_service.create_respawn(
        db_session, world["other_server_id"], "Existing Cave", world["difficulty_id"]
    )

    result = await respawn_copy_service.copy_respawns(db_session, world["server_id"], world["other_server_id"])

    assert result == {
        "copied_count": 1,
        "deleted_count": 0,
        "irreversible": False,
        "message": "Successfully copied 1 respawns",
    }
    target = await catalog_service.list_respawns(db_session, world["other_server_id"])
    assert sorted(r["name"] for r in target) == ["Asura Palace", "Existing Cave"]


@pytest.mark.asyncio
async def test_copy_keeps_every_field(db_session, world):
    await respawn_copy_service.copy_respawns(db_session, world["server_id"], world["other_server_id"])

    source = (await catalog_service.list_respawns(db_session, world["server_id"]))[0]
    copied = (await catalog_service.list_respawns(db_session, world["other_server_id"]))[0]

    assert copied["id"] != source["id"]
    assert copied["server_id"] == world["other_server_id"]
    for field in ("name", "difficulty_id", "min_players", "max_players", "ts_code", "city", "is_available", "point_cost"):
        assert copied[field] == source[field]


@pytest.mark.asyncio
async def test_copy_twice_duplicates_names(db_session, world):
    await respawn_copy_service.copy_respawns(db_session, world["server_id"], world["other_server_id"])
    await respawn_copy_service.copy_respawns(db_session, world["server_id"], world["other_server_id"])

    target = await catalog_service.list_respawns(db_session, world["other_server_id"])
    assert [r["name"] for r in target] == ["Asura Palace", "Asura Palace"]


@pytest.mark.asyncio
async def test_copy_with_overwrite_replaces_target(db_session, world):
    for name in ("Old Cave", "Old Tomb"):
        await catalog_service.create_respawn(db_session, world["other_server_id"], name, world["difficulty_id"])

    result = await respawn_copy_service.copy_respawns(
        db_session, world["server_id"], world["other_server_id"], overwrite_existing=True
    )

    assert result["copied_count"] == 1
    assert result["deleted_count"] == 2
    assert result["irreversible"] is True
    target = await catalog_service.list_respawns(db_session, world["other_server_id"])
    assert [r["name"] for r in target] == ["Asura Palace"]


@pytest.mark.asyncio
async def test_overwrite_of_empty_target_is_not_irreversible(db_session, world):
    result = await respawn_copy_service.copy_respawns(
        db_session, world["server_id"], world["other_server_id"], overwrite_existing=True
    )
    assert result["deleted_count"] == 0
    assert result["irreversible"] is False


@pytest.mark.asyncio
async def test_copy_onto_same_server_is_rejected(db_session, world):
    with pytest.raises(ValidationError) as exc:
        await respawn_copy_service.copy_respawns(db_session, world["server_id"], world["server_id"])
    assert exc.value.code == ErrorCode.SOURCE_TARGET_SAME_SERVER


@pytest.mark.asyncio
async def test_copy_from_empty_server_is_rejected(db_session, world):
    with pytest.raises(ValidationError) as exc:
        await respawn_copy_service.copy_respawns(db_session, world["other_server_id"], world["server_id"])
    assert exc.value.code == ErrorCode.NO_RESPAWNS_TO_COPY


@pytest.mark.asyncio
async def test_copy_to_unknown_server_is_not_found(db_session, world):
    with pytest.raises(NotFoundError) as exc:
        await respawn_copy_service.copy_respawns(db_session, world["server_id"], 999)
    assert exc.value.code == ErrorCode.SERVER_NOT_FOUND


@pytest.mark.asyncio
async def test_overwrite_refuses_when_target_respawns_are_booked(db_session, world, make_draft):
    """Respawns on the target that requests point at are never deleted."""
    # Book on Antica, then try to overwrite Antica from Secura
    await catalog_service.create_respawn(
        db_session, world["other_server_id"], "Secura Cave", world["difficulty_id"]
    )
    await request_service.create_request(db_session, world["alice"], make_draft())

    with pytest.raises(ValidationError) as exc:
        await respawn_copy_service.copy_respawns(
            db_session, world["other_server_id"], world["server_id"], overwrite_existing=True
        )
    assert exc.value.code == ErrorCode.RESPAWN_IN_USE
    assert len(await catalog_service.list_respawns(db_session, world["server_id"])) == 1
