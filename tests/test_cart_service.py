from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import update

from conftest import BUYER, NOW, bundle, course
from coursestore.data.models import CartModel
from coursestore.domain.errors import AlreadyOwned, ConcurrentModification, DuplicateItem, NotFound
from coursestore.domain.schemas import ByobTier
from coursestore.repos.cart_repo import CartRepo


def test_missing_cart_reads_as_empty(carts):
    cart = carts.get_cart(BUYER)
    assert cart.lines == []
    assert cart.version == 0
    assert cart.summary.total == Decimal("0.00")


def test_add_item_prices_from_catalog(carts):
    cart = carts.add_item(BUYER, "course", "c1")

    assert [line.item_id for line in cart.lines] == ["c1"]
    assert cart.lines[0].unit_price == Decimal("100.00")
    assert cart.summary.total == Decimal("100.00")
    assert cart.version == 1


def test_add_unknown_item_is_not_found(carts):
    with pytest.raises(NotFound):
        carts.add_item(BUYER, "course", "nope")


def test_fifth_course_reprices_whole_cart(carts):
    for i in range(1, 5):
        carts.add_item(BUYER, "course", f"c{i}")
    cart = carts.add_item(BUYER, "course", "c5")

    assert cart.summary.tier == ByobTier.FIVE_PLUS
    assert cart.summary.total == Decimal("435.00")
    assert all(line.validity_months == 6 for line in cart.lines)


def test_removing_below_threshold_drops_the_tier(carts):
    for i in range(1, 6):
        carts.add_item(BUYER, "course", f"c{i}")
    cart = carts.remove_line(BUYER, "course", "c3")

    assert cart.summary.tier == ByobTier.NONE
    assert cart.summary.total == Decimal("400.00")
    assert all(line.unit_price == Decimal("100.00") for line in cart.lines)


def test_duplicate_add_leaves_cart_unchanged(carts):
    before = carts.add_item(BUYER, "course", "c1")

    with pytest.raises(DuplicateItem):
        carts.add_item(BUYER, "course", "c1")

    after = carts.get_cart(BUYER)
    assert len(after.lines) == 1
    assert after.version == before.version


def test_same_id_with_different_kind_is_not_a_duplicate(carts):
    carts.add_line(BUYER, course("x1"))
    cart = carts.add_line(BUYER, bundle("x1"))
    assert len(cart.lines) == 2


def test_owned_course_cannot_be_added(carts, grant):
    grant(BUYER, "course", "c1", NOW + timedelta(days=10))

    with pytest.raises(AlreadyOwned) as exc:
        carts.add_item(BUYER, "course", "c1")

    assert exc.value.access_info["type"] == "direct"
    assert carts.get_cart(BUYER).lines == []


def test_course_covered_by_bundle_cannot_be_added(carts, grant):
    grant(BUYER, "bundle", "b9", NOW + timedelta(days=10), course_ids=["c2"])

    with pytest.raises(AlreadyOwned) as exc:
        carts.add_item(BUYER, "course", "c2")
    assert exc.value.access_info["type"] == "bundle"


def test_owned_bundle_cannot_be_added(carts, grant):
    grant(BUYER, "bundle", "b1", NOW + timedelta(days=10), course_ids=["c7", "c8"])

    with pytest.raises(AlreadyOwned):
        carts.add_item(BUYER, "bundle", "b1")


def test_skip_ownership_check(carts, grant):
    grant(BUYER, "course", "c1", NOW + timedelta(days=10))
    cart = carts.add_item(BUYER, "course", "c1", skip_ownership_check=True)
    assert len(cart.lines) == 1


def test_expired_entitlement_does_not_block(carts, grant):
    grant(BUYER, "course", "c1", NOW - timedelta(days=1))
    cart = carts.add_item(BUYER, "course", "c1")
    assert len(cart.lines) == 1


def test_remove_missing_line(carts):
    carts.add_item(BUYER, "course", "c1")
    with pytest.raises(NotFound):
        carts.remove_line(BUYER, "bundle", "c1")


def test_replace_rejects_duplicates(carts):
    with pytest.raises(DuplicateItem):
        carts.replace(BUYER, [course("c1"), course("c1")])


def test_replace_and_clear(carts):
    cart = carts.replace(BUYER, [course(f"c{i}") for i in range(10)])
    assert cart.summary.tier == ByobTier.TEN_PLUS
    assert cart.summary.total == Decimal("820.00")

    cleared = carts.clear(BUYER)
    assert cleared.lines == []
    assert cleared.summary.total == Decimal("0.00")
    assert cleared.version == cart.version + 1


def test_clear_without_cart_is_a_no_op(carts):
    assert carts.clear(BUYER).version == 0


def test_merge_prefers_local_lines(carts):
    carts.replace(BUYER, [course("c1", "100.00", title="Remote"), course("c2")])

    cart = carts.merge(BUYER, [course("c1", "90.00", title="Local"), course("c3")])

    by_id = {line.item_id: line for line in cart.lines}
    assert set(by_id) == {"c1", "c2", "c3"}
    assert by_id["c1"].title == "Local"
    assert cart.summary.subtotal == Decimal("290.00")


def test_stale_version_is_rejected(db, carts):
    carts.add_item(BUYER, "course", "c1")

    # keep the loaded row around so the session keeps handing back the stale version
    stale = CartRepo(db).get_cart(BUYER)
    db.execute(
        update(CartModel)
        .where(CartModel.id == stale.id)
        .values(version=stale.version + 1)
        .execution_options(synchronize_session=False)
    )
    db.commit()

    with pytest.raises(ConcurrentModification):
        carts.add_item(BUYER, "course", "c2")

    cart = carts.get_cart(BUYER)
    assert [line.item_id for line in cart.lines] == ["c1"]
    assert cart.version == 2


def test_validate_reports_conflicts_and_hints(carts, grant):
    grant(BUYER, "course", "c1", NOW + timedelta(days=10))
    grant(BUYER, "bundle", "b9", NOW + timedelta(days=10), course_ids=["c2"])

    result = carts.validate(BUYER, [course("c1"), course("c2"), course("c3"), course("c3")])

    assert not result.valid
    kinds = sorted(c.conflict_type for c in result.conflicts)
    assert kinds == ["already_owned", "duplicate", "in_bundle"]
    assert result.course_count == 4
    assert any("1 more course" in w for w in result.warnings)


def test_validate_clean_cart(carts):
    carts.add_item(BUYER, "course", "c1")
    result = carts.validate(BUYER)
    assert result.valid
    assert result.item_count == 1
    assert result.tier == ByobTier.NONE
