"""
Triage Service Tests
====================
Review queue listing and the four review operations: confirm, reassign,
create-and-link and ignore.
"""

from datetime import timedelta

import pytest

from authority.errors import PersistenceConflictError, ProductNotFoundError, RowValidationError, SupplierItemNotFoundError
from authority.models import (
    Gs1VerificationStatus,
    MatchMethod,
    ProductDraft,
    QualityScore,
    TriageFilters,
    TriageIssueType,
    utcnow,
)


@pytest.fixture
def triage(services):
    return services.triage


# ============================================================================
# REVIEW QUEUE
# ============================================================================

def test_queue_contains_only_uncertain_active_items(triage, make_product, make_item):
    product = make_product("Surgical Gloves Size M", gtin="4006501003638")
    flagged = make_item(product.id, supplier_id="SUP-1")
    low = make_item(product.id, supplier_id="SUP-2", needs_review=False, match_confidence=0.6)
    unscored = make_item(product.id, supplier_id="SUP-3", needs_review=False,
                         match_method=MatchMethod.MANUAL, match_confidence=None)
    make_item(product.id, supplier_id="SUP-4", needs_review=False, match_confidence=1.0,
              match_method=MatchMethod.GTIN_EXACT)
    make_item(product.id, supplier_id="SUP-5", is_active=False)

    page = triage.list_for_review()

    assert page.total == 3
    assert {i.supplier_item.id for i in page.items} == {flagged.id, low.id, unscored.id}
    print("✓ Review queue filters confident and inactive items")


def test_queue_ordering(triage, make_product, make_item):
    product = make_product("Gauze swabs")
    now = utcnow()
    unflagged_low = make_item(product.id, supplier_id="A", needs_review=False, match_confidence=0.4)
    flagged_mid = make_item(product.id, supplier_id="B", match_confidence=0.7)
    flagged_low = make_item(product.id, supplier_id="C", match_confidence=0.55)
    flagged_null_old = make_item(product.id, supplier_id="D", match_confidence=None,
                                 created_at=now - timedelta(days=2))
    flagged_null_new = make_item(product.id, supplier_id="E", match_confidence=None, created_at=now)

    ids = [i.supplier_item.id for i in triage.list_for_review().items]

    assert ids == [flagged_low.id, flagged_mid.id, flagged_null_new.id, flagged_null_old.id, unflagged_low.id]


def test_queue_filters(triage, make_product, make_item):
    with_gtin = make_product("Surgical Gloves Size M", gtin="4006501003638")
    without_gtin = make_product("Cotton pads")
    fuzzy = make_item(with_gtin.id, supplier_id="SUP-1", supplier_name="Gloves listing")
    manual = make_item(without_gtin.id, supplier_id="SUP-2", match_method=MatchMethod.MANUAL,
                       match_confidence=0.5, needs_review=False, supplier_sku="CP-77")

    def ids(**kwargs):
        return [i.supplier_item.id for i in triage.list_for_review(TriageFilters(**kwargs)).items]

    assert ids(issue_type=TriageIssueType.NEEDS_REVIEW) == [fuzzy.id]
    assert ids(issue_type=TriageIssueType.LOW_CONFIDENCE) == [fuzzy.id, manual.id]
    assert ids(issue_type=TriageIssueType.NO_GTIN) == [manual.id]
    assert ids(issue_type=TriageIssueType.FUZZY_MATCH) == [fuzzy.id]
    assert ids(supplier_id="SUP-2") == [manual.id]
    assert ids(search="cp-77") == [manual.id]
    assert ids(search="4006501003638") == [fuzzy.id]
    assert ids(search="gloves listing") == [fuzzy.id]


def test_pagination_and_limit_clamp(triage, make_product, make_item):
    for n in range(7):
        make_item(make_product(f"Product {n}").id, match_confidence=0.5 + n / 100)

    first = triage.list_for_review(limit=3)
    second = triage.list_for_review(limit=3, offset=3)
    assert first.total == 7
    assert len(first.items) == 3
    assert len(second.items) == 3
    assert not {i.supplier_item.id for i in first.items} & {i.supplier_item.id for i in second.items}

    assert triage.list_for_review(limit=10_000).limit == 500
    assert triage.list_for_review(limit=0).limit == 50
    assert triage.list_for_review(offset=-5).offset == 0


def test_triage_item_context(triage, repository, make_product, make_item):
    product = make_product("Surgical Gloves Size M", gtin="4006501003638", brand="MedPro")
    repository.save_quality_score(QualityScore(product_id=product.id, overall_score=42.0, missing_fields=['image']))
    item = make_item(product.id, supplier_id="SUP-1")
    make_item(product.id, supplier_id="SUP-2", needs_review=False, match_confidence=1.0)

    row = triage.list_for_review().items[0]
    data = row.to_dict()

    assert row.supplier_item.id == item.id
    assert data['product_name'] == "Surgical Gloves Size M"
    assert data['product_gtin'] == "4006501003638"
    assert data['quality_score'] == 42.0
    assert data['missing_fields'] == ['image']
    assert data['duplicate_count'] == 1
    assert data['match_method'] == 'FUZZY_NAME'


def test_stats(triage, make_product, make_item):
    with_gtin = make_product("Gloves", gtin="4006501003638")
    without_gtin = make_product("Cotton pads")
    make_item(with_gtin.id, supplier_id="A")
    make_item(without_gtin.id, supplier_id="B", needs_review=False, match_confidence=0.3,
              match_method=MatchMethod.MANUAL)

    stats = triage.get_stats()

    assert stats.total == 2
    assert stats.needs_review == 1
    assert stats.low_confidence == 2
    assert stats.no_gtin == 1
    assert stats.fuzzy_match == 1


def test_search_products(triage, make_product):
    gloves = make_product("Surgical Gloves Size M", gtin="4006501003638")
    make_product("Cotton pads")

    assert triage.search_products("g") == []
    assert triage.search_products(None) == []
    assert [p.id for p in triage.search_products("gloves")] == [gloves.id]
    assert [p.id for p in triage.search_products("40065010")] == [gloves.id]


# ============================================================================
# CONFIRM
# ============================================================================

def test_confirm_match(triage, repository, audit_sink, make_product, make_item):
    product = make_product("Gloves")
    item = make_item(product.id)

    result = triage.confirm_match(item.id, "user-1")

    assert result.changed
    stored = repository.get_supplier_item(item.id)
    assert not stored.needs_review
    assert stored.matched_by == "user-1"
    assert stored.product_id == product.id
    assert stored.match_method == MatchMethod.FUZZY_NAME
    record = audit_sink.records[-1]
    assert record.operation == "confirm_match"
    assert record.entity_type == "supplier_item"
    assert record.entity_id == item.id
    assert record.changes['noop'] is False


def test_confirm_match_is_idempotent(triage, audit_sink, make_product, make_item):
    item = make_item(make_product("Gloves").id)
    triage.confirm_match(item.id, "user-1")

    again = triage.confirm_match(item.id, "user-1")

    assert not again.changed
    assert audit_sink.operations() == ["confirm_match", "confirm_match"]
    assert audit_sink.records[-1].changes['noop'] is True


def test_confirm_unknown_item_is_audited(triage, audit_sink):
    with pytest.raises(SupplierItemNotFoundError):
        triage.confirm_match("missing", "user-1")

    record = audit_sink.records[-1]
    assert record.operation == "confirm_match_failed"
    assert record.changes['error_type'] == "SupplierItemNotFoundError"


# ============================================================================
# REASSIGN
# ============================================================================

def test_reassign_product(triage, repository, audit_sink, make_product, make_item):
    wrong = make_product("Gloves S")
    right = make_product("Gloves M")
    item = make_item(wrong.id)

    result = triage.reassign_product(item.id, right.id, "user-2")

    assert result.changed
    stored = repository.get_supplier_item(item.id)
    assert stored.product_id == right.id
    assert stored.match_method == MatchMethod.MANUAL
    assert stored.match_confidence == 1.0
    assert not stored.needs_review
    assert stored.matched_by == "user-2"
    assert audit_sink.records[-1].changes['from_product_id'] == wrong.id
    assert audit_sink.records[-1].changes['to_product_id'] == right.id

    assert not triage.reassign_product(item.id, right.id, "user-2").changed


def test_reassign_to_missing_product(triage, repository, audit_sink, make_product, make_item):
    product = make_product("Gloves")
    item = make_item(product.id)

    with pytest.raises(ProductNotFoundError, match="Target product not found"):
        triage.reassign_product(item.id, "no-such-product", "user-2")

    assert repository.get_supplier_item(item.id).product_id == product.id
    assert audit_sink.operations() == ["reassign_product_failed"]


def test_reassign_conflict_with_existing_active_item(triage, repository, make_product, make_item):
    first = make_product("Gloves S")
    second = make_product("Gloves M")
    item = make_item(first.id, supplier_id="SUP-1")
    make_item(second.id, supplier_id="SUP-1")

    with pytest.raises(PersistenceConflictError):
        triage.reassign_product(item.id, second.id, "user-2")

    assert repository.get_supplier_item(item.id).product_id == first.id


# ============================================================================
# CREATE & LINK
# ============================================================================

def test_create_product_and_link(services, triage, repository, make_product, make_item):
    placeholder = make_product("Ibuprofen?")
    item = make_item(placeholder.id)

    result = triage.create_product_and_link(
        item.id, ProductDraft(name="Ibuprofen 400", gtin="8714632012345", brand="PharmaCo"), "user-3"
    )

    assert result.changed
    assert result.created_product
    stored = repository.get_supplier_item(item.id)
    assert stored.product_id == result.product_id
    assert stored.match_method == MatchMethod.MANUAL
    assert stored.matched_by == "user-3"

    services.enrichment_queue.wait_all(timeout=10)
    product = repository.find_product_by_id(result.product_id)
    assert product.is_gs1_product
    assert product.gs1_verification_status == Gs1VerificationStatus.VERIFIED
    print("✓ New product linked and enriched in the background")


def test_create_product_and_link_is_idempotent(triage, repository, make_product, make_item):
    item = make_item(make_product("Unknown").id)
    draft = ProductDraft(name="Cotton pads")

    first = triage.create_product_and_link(item.id, draft, "user-3")
    second = triage.create_product_and_link(item.id, draft, "user-3")

    assert first.created_product
    assert not second.changed
    assert not second.created_product
    assert second.product_id == first.product_id
    assert len(repository.list_products()) == 2


def test_create_with_existing_gtin_links_instead(triage, repository, make_product, make_item):
    existing = make_product("Gloves", gtin="4006501003638")
    item = make_item(make_product("Unknown").id)

    result = triage.create_product_and_link(item.id, ProductDraft(name="Gloves again", gtin="4006501003638"), "u")

    assert not result.created_product
    assert result.product_id == existing.id
    assert len(repository.list_products()) == 2


def test_create_with_invalid_gtin(triage, audit_sink, make_product, make_item):
    item = make_item(make_product("Unknown").id)

    with pytest.raises(RowValidationError, match="Invalid GTIN format"):
        triage.create_product_and_link(item.id, ProductDraft(name="Bad", gtin="12AB"), "user-3")

    assert audit_sink.records == []


# ============================================================================
# IGNORE
# ============================================================================

def test_mark_ignored(triage, repository, make_product, make_item):
    product = make_product("Gloves")
    item = make_item(product.id)

    result = triage.mark_ignored(item.id, "user-4")
    assert result.changed
    stored = repository.get_supplier_item(item.id)
    assert not stored.is_active
    assert stored.product_id == product.id
    assert repository.find_product_by_id(product.id) is not None
    assert triage.list_for_review().total == 0

    assert not triage.mark_ignored(item.id, "user-4").changed


def test_ignored_item_stays_ignored_on_reimport(services, repository):
    first = services.importer.import_catalog("SUP-1", [{'name': 'Gauze', 'sku': 'GZ'}])
    item_id = first.items[0].supplier_item_id
    services.triage.mark_ignored(item_id, "user-4")

    second = services.importer.import_catalog("SUP-1", [{'name': 'Gauze', 'sku': 'GZ', 'price': '2.00'}])

    assert second.items[0].supplier_item_id == item_id
    stored = repository.get_supplier_item(item_id)
    assert not stored.is_active
    assert stored.unit_price == 2.0
