"""Machine snapshots API tests."""


def _create_program(client, payload, **overrides):
    response = client.post("/v1/machine-programs", json={**payload, **overrides})
    assert response.status_code == 201, response.text
    return response.json()


def _create_snapshot(client, **body):
    response = client.post("/v1/machine-snapshots", json=body or None)
    assert response.status_code == 201, response.text
    return response.json()


def test_create_and_list_snapshots(client_with_db, program_payload):
    _create_program(client_with_db, program_payload, machine_number=11)
    _create_program(client_with_db, program_payload, work_order="OT-2", machine_number=12)

    everything = _create_snapshot(client_with_db)
    only_11 = _create_snapshot(client_with_db, machine_numbers=[11], description="Machine 11")

    assert everything["total_records"] == 2
    assert only_11["total_records"] == 1

    listed = {s["snapshot_id"]: s for s in client_with_db.get("/v1/machine-snapshots").json()}
    assert listed[only_11["snapshot_id"]]["description"] == "Machine 11"
    assert listed[only_11["snapshot_id"]]["machine_count"] == 1
    assert listed[everything["snapshot_id"]]["size_bytes"] == everything["size_bytes"]


def test_verify_stats_and_data(client_with_db, program_payload):
    _create_program(client_with_db, program_payload)
    snapshot_id = _create_snapshot(client_with_db)["snapshot_id"]

    verify = client_with_db.get(f"/v1/machine-snapshots/{snapshot_id}/verify").json()
    assert verify == {"snapshot_id": snapshot_id, "is_valid": True}
    assert client_with_db.get("/v1/machine-snapshots/missing/verify").json()["is_valid"] is False

    stats = client_with_db.get(f"/v1/machine-snapshots/{snapshot_id}/stats").json()
    assert stats["total_programs"] == 1
    assert stats["client_breakdown"] == {"Acme Foods": 1}

    data = client_with_db.get(f"/v1/machine-snapshots/{snapshot_id}/data").json()
    assert [record["work_order"] for record in data] == ["OT-1"]

    assert client_with_db.get("/v1/machine-snapshots/missing/stats").status_code == 404


def test_export(client_with_db, program_payload):
    _create_program(client_with_db, program_payload)
    snapshot_id = _create_snapshot(client_with_db)["snapshot_id"]

    as_zip = client_with_db.get(f"/v1/machine-snapshots/{snapshot_id}/export")
    assert as_zip.status_code == 200
    assert as_zip.headers["content-type"] == "application/zip"
    assert as_zip.content[:2] == b"PK"

    as_json = client_with_db.get(f"/v1/machine-snapshots/{snapshot_id}/export", params={"format": "json"})
    assert as_json.status_code == 200
    assert as_json.json()[0]["work_order"] == "OT-1"

    unsupported = client_with_db.get(f"/v1/machine-snapshots/{snapshot_id}/export", params={"format": "xml"})
    assert unsupported.status_code == 400


def test_restore_after_clear(client_with_db, program_payload):
    created = _create_program(client_with_db, program_payload)
    client_with_db.patch(f"/v1/machine-programs/{created['id']}/status", json={"status": "running"})
    snapshot_id = _create_snapshot(client_with_db)["snapshot_id"]
    client_with_db.delete("/v1/machine-programs/clear", params={"snapshot_first": False})

    response = client_with_db.post(
        f"/v1/machine-snapshots/{snapshot_id}/restore",
        json={"create_snapshot_first": False},
    )

    assert response.status_code == 200
    assert response.json()["restored_records"] == 1
    assert response.json()["pre_restore_snapshot_id"] is None
    restored = client_with_db.get(f"/v1/machine-programs/{created['id']}").json()
    assert restored["status"] == "running"
    assert restored["progress"] == 5


def test_restore_takes_pre_restore_snapshot(client_with_db, program_payload):
    _create_program(client_with_db, program_payload)
    snapshot_id = _create_snapshot(client_with_db)["snapshot_id"]

    response = client_with_db.post(f"/v1/machine-snapshots/{snapshot_id}/restore")

    assert response.status_code == 200
    pre_restore = response.json()["pre_restore_snapshot_id"]
    assert pre_restore is not None
    ids = [s["snapshot_id"] for s in client_with_db.get("/v1/machine-snapshots").json()]
    assert sorted(ids) == sorted([snapshot_id, pre_restore])


def test_restore_missing_snapshot(client_with_db):
    response = client_with_db.post("/v1/machine-snapshots/snapshot_20200101_000000_deadbeef/restore")

    assert response.status_code == 404
    assert client_with_db.get("/v1/machine-snapshots").json() == []


def test_import(client_with_db, program_payload):
    _create_program(client_with_db, program_payload)
    snapshot_id = _create_snapshot(client_with_db)["snapshot_id"]
    archive = client_with_db.get(f"/v1/machine-snapshots/{snapshot_id}/export").content

    imported = client_with_db.post(
        "/v1/machine-snapshots/import",
        files={"file": ("backup.zip", archive, "application/zip")},
    )
    assert imported.status_code == 201
    assert imported.json()["snapshot_id"].startswith("imported_")
    assert imported.json()["total_records"] == 1

    invalid = client_with_db.post(
        "/v1/machine-snapshots/import",
        files={"file": ("broken.zip", b"not an archive", "application/zip")},
    )
    assert invalid.status_code == 400

    wrong_type = client_with_db.post(
        "/v1/machine-snapshots/import",
        files={"file": ("backup.csv", b"a,b", "text/csv")},
    )
    assert wrong_type.status_code == 400

    assert len(client_with_db.get("/v1/machine-snapshots").json()) == 2


def test_daily_snapshot(client_with_db):
    response = client_with_db.post("/v1/machine-snapshots/daily")

    assert response.status_code == 201
    assert response.json()["total_records"] == 0


def test_delete_snapshot(client_with_db):
    snapshot_id = _create_snapshot(client_with_db)["snapshot_id"]

    assert client_with_db.delete(f"/v1/machine-snapshots/{snapshot_id}").status_code == 204
    assert client_with_db.delete(f"/v1/machine-snapshots/{snapshot_id}").status_code == 404
