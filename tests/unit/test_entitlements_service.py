from billing import entitlements


def test_grant_is_idempotent(fake_enrollments):
    fake_enrollments.product_courses["p1"] = "c1"
    first = entitlements.grant_for_product("u1", {"id": "p1"})
    second = entitlements.grant_for_product("u1", {"id": "p1"})
    assert first == second == ["c1"]
    assert len(fake_enrollments.rows) == 1
    assert fake_enrollments.active_for("u1") == ["c1"]


def test_product_alias_from_product_row(fake_enrollments):
    assert entitlements.grant_for_product("u1", {"id": "p1", "course_id": "c9"}) == ["c9"]


def test_bundle_expands_groups_and_nested_products(fake_enrollments):
    fake_enrollments.bundles["bundle"] = [
        {"item_type": "course", "item_id": "c1"},
        {"item_type": "course_group", "item_id": "g1"},
        {"item_type": "product", "item_id": "p2"},
    ]
    fake_enrollments.groups["g1"] = ["c2", "c1"]
    fake_enrollments.product_courses["p2"] = "c3"
    assert entitlements.resolve_course_ids("bundle") == ["c1", "c2", "c3"]


def test_cyclic_bundles_terminate(fake_enrollments):
    fake_enrollments.bundles["a"] = [{"item_type": "product", "item_id": "b"}, {"item_type": "course", "item_id": "c1"}]
    fake_enrollments.bundles["b"] = [{"item_type": "product", "item_id": "a"}, {"item_type": "course", "item_id": "c2"}]
    assert sorted(entitlements.resolve_course_ids("a")) == ["c1", "c2"]


def test_revoke_deactivates_without_deleting(fake_enrollments):
    fake_enrollments.product_courses["p1"] = "c1"
    entitlements.grant_for_product("u1", {"id": "p1"})
    assert entitlements.revoke_for_product("u1", "p1") == ["c1"]
    assert fake_enrollments.active_for("u1") == []
    assert fake_enrollments.rows[("u1", "c1")]["is_active"] is False


def test_grant_failure_is_not_propagated(monkeypatch, fake_enrollments):
    fake_enrollments.product_courses["p1"] = "c1"

    def _boom(rows):
        raise RuntimeError("db down")

    monkeypatch.setattr("billing.entitlements.repository.upsert_enrollments", _boom)
    assert entitlements.grant_for_product("u1", {"id": "p1"}) == []


def test_grant_without_user_is_noop(fake_enrollments):
    assert entitlements.grant_courses("", ["c1"]) == []
    assert fake_enrollments.rows == {}
