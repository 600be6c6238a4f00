"""
Catalog Import Tests
====================
End-to-end supplier catalog batches through CatalogImportService over the
in-memory repository and the mock GDSN client.
"""

import pytest

from authority.enrichment import EnrichmentService, GdsnNetworkError, MockGdsnClient
from authority.errors import PersistenceConflictError
from authority.imports import CancellationToken, CatalogImportService, ImportOptions
from authority.matching import GtinMatcher
from authority.models import Gs1VerificationStatus, ImportRunStatus, MatchMethod, RowState
from authority.pipeline_tracking import final_status, track_import_run, update_run_counts
from authority.repositories import InMemoryCatalogRepository
from authority.settings import AuthorityConfig


NO_ENRICH = ImportOptions(auto_enrich=False)

SCENARIO_CSV = "sku,ean,name,price\nABC-1,04006501003638,Sterile Gloves M,12.50\n"


@pytest.fixture
def importer(services):
    return services.importer


# ============================================================================
# END-TO-END
# ============================================================================

def test_csv_row_matches_existing_product_by_gtin(importer, repository, make_product):
    existing = make_product("Sterile Gloves (M)", gtin="04006501003638")

    result = importer.import_csv("SUP-1", SCENARIO_CSV, NO_ENRICH)

    assert result.total_rows == 1
    assert result.success_count == 1
    assert result.review_count == 0
    row = result.items[0]
    assert row.success
    assert row.state == RowState.DONE
    assert row.product_id == existing.id
    assert row.match_method == MatchMethod.GTIN_EXACT
    assert row.match_confidence == 1.0
    assert not row.needs_review
    assert not row.created_product

    item = repository.get_supplier_item(row.supplier_item_id)
    assert item.global_supplier_id == "SUP-1"
    assert item.supplier_sku == "ABC-1"
    assert item.unit_price == 12.5
    assert item.currency == "EUR"
    assert item.min_order_qty == 1
    assert item.matched_by == "system"
    print("✓ GTIN match imported with default currency")


def test_csv_row_creates_product_when_nothing_matches(importer, repository):
    result = importer.import_csv("SUP-1", SCENARIO_CSV, NO_ENRICH)

    row = result.items[0]
    assert row.success
    assert row.created_product
    assert row.match_method == MatchMethod.MANUAL
    assert row.match_confidence == 0.8
    assert row.needs_review

    product = repository.find_product_by_id(row.product_id)
    assert product.gtin == "04006501003638"
    assert product.is_gs1_product
    assert product.name == "Sterile Gloves M"
    assert product.gs1_verification_status == Gs1VerificationStatus.UNVERIFIED
    print("✓ Unmatched row created a GS1 product")


def test_created_product_without_gtin_gets_lower_confidence(importer, repository):
    result = importer.import_catalog("SUP-1", [{'name': 'Bandages', 'sku': 'BND-1'}], NO_ENRICH)

    row = result.items[0]
    assert row.created_product
    assert row.match_confidence == 0.5
    assert not repository.find_product_by_id(row.product_id).is_gs1_product


def test_new_product_built_from_gdsn_record(importer, repository, gdsn_client):
    rows = [{'gtin': '8714632012345', 'name': 'Ibuprofen 400', 'sku': 'IBU'}]
    result = importer.import_catalog("SUP-1", rows, ImportOptions(auto_enrich=True))

    row = result.items[0]
    assert row.created_product
    assert row.enriched
    assert result.enriched_count == 1
    product = repository.find_product_by_id(row.product_id)
    assert product.name == "Ibuprofen 400mg Tablets"
    assert product.brand == "PharmaCo"
    assert product.gs1_verification_status == Gs1VerificationStatus.VERIFIED
    assert product.gs1_data['provider_id'] == "mock"
    assert gdsn_client.lookups == ['8714632012345']
    # The supplier keeps its own listing name
    assert repository.get_supplier_item(row.supplier_item_id).supplier_name == "Ibuprofen 400"


def test_existing_product_enriched_after_match(importer, repository, make_product):
    existing = make_product("Gloves", gtin="4006501003638")

    result = importer.import_catalog("SUP-1", [{'gtin': '4006501003638', 'name': 'Gloves'}])

    row = result.items[0]
    assert row.enriched
    assert row.state == RowState.DONE
    assert repository.find_product_by_id(existing.id).gs1_verification_status == Gs1VerificationStatus.VERIFIED


def test_gtin_unknown_to_gdsn_adds_warning(importer, repository):
    result = importer.import_catalog("SUP-1", [{'gtin': '96385074', 'name': 'Cotton pads'}])

    row = result.items[0]
    assert row.success
    assert not row.enriched
    assert "GS1 enrichment: GTIN not found in GDSN" in row.warnings


def test_enrichment_failure_is_not_fatal(repository, config):
    client = MockGdsnClient(failures={'4006501003638': GdsnNetworkError("connection reset")})
    importer = CatalogImportService(repository, GtinMatcher(), EnrichmentService(repository, client), config)

    result = importer.import_catalog("SUP-1", [{'gtin': '4006501003638', 'name': 'Gloves'}])

    row = result.items[0]
    assert row.success
    assert row.created_product
    assert not row.enriched
    assert "GS1 enrichment: connection reset" in row.warnings
    assert repository.find_product_by_id(row.product_id).gs1_verification_status == Gs1VerificationStatus.FAILED


# ============================================================================
# ROW FAILURES
# ============================================================================

def test_invalid_rows_skipped_by_default(importer):
    rows = [{'sku': 'NO-NAME', 'price': '1.00'}, {'name': 'Gauze', 'price': 'abc'}]
    result = importer.import_catalog("SUP-1", rows, NO_ENRICH)

    assert result.failed_count == 1
    assert result.success_count == 1
    skipped, kept = result.items
    assert skipped.state == RowState.FAILED
    assert skipped.errors == ["Name is required"]
    assert kept.success
    assert kept.warnings == ["Invalid price: abc"]


def test_invalid_rows_imported_when_not_skipping(importer, repository):
    options = ImportOptions(auto_enrich=False, skip_invalid_rows=False)
    result = importer.import_catalog("SUP-1", [{'sku': 'NO-NAME', 'price': '1.00'}], options)

    row = result.items[0]
    assert row.success
    assert "Name is required" in row.warnings
    assert repository.find_product_by_id(row.product_id).name == "Unnamed item NO-NAME"


def test_nameless_rows_stay_separate_when_not_skipping(importer, repository):
    options = ImportOptions(auto_enrich=False, skip_invalid_rows=False)
    rows = [{'sku': 'A-100', 'price': '1.00'}, {'sku': 'A-101', 'price': '2.00'}]

    result = importer.import_catalog("SUP-1", rows, options)

    first, second = result.items
    assert second.match_method == MatchMethod.MANUAL
    assert second.created_product
    assert first.product_id != second.product_id
    assert first.supplier_item_id != second.supplier_item_id
    assert sorted(p.name for p in repository.list_products()) == ["Unnamed item A-100", "Unnamed item A-101"]
    assert repository.get_supplier_item(first.supplier_item_id).supplier_sku == 'A-100'
    assert repository.get_supplier_item(first.supplier_item_id).unit_price == 1.0


def test_no_product_creation(importer, repository):
    options = ImportOptions(auto_enrich=False, create_new_products=False)
    result = importer.import_catalog("SUP-1", [{'name': 'Bandages'}], options)

    row = result.items[0]
    assert not row.success
    assert row.errors == ["Could not match or create product"]
    assert row.needs_review
    assert repository.list_products() == []


class ExplodingRepository(InMemoryCatalogRepository):
    """Fails the supplier item write for one SKU"""

    def upsert_supplier_item(self, fields):
        if fields.supplier_sku == 'BOOM':
            raise PersistenceConflictError("simulated write failure")
        return super().upsert_supplier_item(fields)


def test_row_failure_is_isolated_and_rolled_back(config):
    repository = ExplodingRepository()
    importer = CatalogImportService(repository, GtinMatcher(), None, config)
    rows = [
        {'name': 'Gauze', 'sku': 'G-1', 'gtin': '96385074'},
        {'name': 'Exploding item', 'sku': 'BOOM', 'gtin': '4006501003638'},
        {'name': 'Plaster', 'sku': 'P-1'},
    ]

    result = importer.import_catalog("SUP-1", rows, NO_ENRICH)

    assert result.success_count == 2
    assert result.failed_count == 1
    failed = result.items[1]
    assert failed.state == RowState.FAILED
    assert failed.errors == ["Processing error: simulated write failure"]
    # The product created for the failed row was rolled back with it
    assert repository.find_product_by_gtin('4006501003638') is None
    assert len(repository.list_products()) == 2
    print("✓ Failing row rolled back, others committed")


# ============================================================================
# BATCH BEHAVIOUR
# ============================================================================

def test_results_preserve_input_order(importer):
    rows = [{'name': f'Item {n}', 'sku': f'S-{n}'} for n in range(5)]
    result = importer.import_catalog("SUP-1", rows, NO_ENRICH)

    assert [item.row_index for item in result.items] == list(range(5))
    assert result.import_id.startswith("import-")
    assert result.completed_at is not None


def test_duplicate_gtin_within_batch_creates_one_product(importer, repository):
    rows = [
        {'name': 'Gloves M', 'gtin': '4006501003638', 'sku': 'A'},
        {'name': 'Gloves M (box)', 'gtin': '4006501003638', 'sku': 'B'},
    ]
    result = importer.import_catalog("SUP-1", rows, NO_ENRICH)

    first, second = result.items
    assert first.created_product
    assert not second.created_product
    assert second.product_id == first.product_id
    assert second.match_method == MatchMethod.GTIN_EXACT
    assert len(repository.list_products()) == 1
    # Same supplier and product: the second row updates the first row's item
    assert second.supplier_item_id == first.supplier_item_id
    assert repository.get_supplier_item(first.supplier_item_id).supplier_sku == 'B'


def test_later_rows_fuzzy_match_products_created_earlier(importer):
    rows = [{'name': 'Surgical Gloves Size M'}, {'name': 'Surgical Gloves M'}]
    result = importer.import_catalog("SUP-1", rows, NO_ENRICH)

    first, second = result.items
    assert second.product_id == first.product_id
    assert second.match_method == MatchMethod.FUZZY_NAME
    assert second.needs_review


class CancelAfter(CancellationToken):

    def __init__(self, rows):
        super().__init__()
        self.remaining = rows

    def raise_if_cancelled(self):
        if self.remaining == 0:
            self.cancel()
        self.remaining -= 1
        super().raise_if_cancelled()


def test_cancellation_between_rows(importer, repository):
    rows = [{'name': name} for name in ('Gauze', 'Plaster', 'Syringe', 'Scalpel')]
    result = importer.import_catalog("SUP-1", rows, NO_ENRICH, cancel_token=CancelAfter(2))

    assert result.cancelled
    assert len(result.items) == 2
    assert result.total_rows == 4
    assert len(repository.list_products()) == 2


def test_cancelled_before_start(importer):
    token = CancellationToken()
    token.cancel()
    result = importer.import_catalog("SUP-1", [{'name': 'Gauze'}], NO_ENRICH, token)

    assert result.cancelled
    assert result.items == []


def test_confirmed_match_survives_reimport(services, repository, make_product):
    wanted = make_product("Nitrile Gloves Large")
    first = services.importer.import_catalog("SUP-1", [{'name': 'Gloves nitrile L', 'sku': 'NIT-L', 'price': '9.00'}],
                                             NO_ENRICH)
    item_id = first.items[0].supplier_item_id
    services.triage.reassign_product(item_id, wanted.id, "user-7")

    second = services.importer.import_catalog("SUP-1", [{'name': 'Gloves nitrile L', 'sku': 'NIT-L', 'price': '8.50'}],
                                              NO_ENRICH)

    row = second.items[0]
    assert row.product_id == wanted.id
    assert row.match_method == MatchMethod.MANUAL
    assert row.match_confidence == 1.0
    assert not row.needs_review
    item = repository.get_supplier_item(row.supplier_item_id)
    assert item.unit_price == 8.5
    assert item.matched_by == "user-7"
    assert not item.needs_review


def test_min_auto_match_confidence_override(importer, make_product):
    make_product("Surgical Gloves Size M")
    rows = [{'name': 'Surgical Gloves M'}]

    default = importer.import_catalog("SUP-1", rows, NO_ENRICH)
    assert default.items[0].needs_review

    lenient = importer.import_catalog("SUP-2", rows, ImportOptions(auto_enrich=False, min_auto_match_confidence=0.8))
    assert not lenient.items[0].needs_review
    assert lenient.review_count == 0


def test_supplier_override_from_config(repository, make_product):
    config = AuthorityConfig(supplier_overrides={'SUP-TRUSTED': {'auto_accept_threshold': 0.75}})
    importer = CatalogImportService(repository, GtinMatcher(config.matching), None, config)
    make_product("Surgical Gloves Size M")

    result = importer.import_catalog("SUP-TRUSTED", [{'name': 'Surgical Gloves M'}], NO_ENRICH)
    assert not result.items[0].needs_review


def test_api_format_rows(importer, repository):
    rows = [{'productName': 'Syringe 5ml', 'supplierSku': 'SYR-5', 'unitPrice': 0.35, 'currency': 'usd'}]
    result = importer.import_catalog("SUP-1", rows, ImportOptions(auto_enrich=False, integration_type='api'))

    item = repository.get_supplier_item(result.items[0].supplier_item_id)
    assert item.supplier_sku == 'SYR-5'
    assert item.currency == 'USD'
    assert item.integration_type.value == 'API'


def test_result_to_dict(importer):
    result = importer.import_catalog("SUP-1", [{'name': 'Gauze'}], NO_ENRICH)
    data = result.to_dict()

    assert data['success_count'] == 1
    assert data['items'][0]['state'] == 'DONE'
    assert data['items'][0]['match_method'] == 'MANUAL'


# ============================================================================
# RUN TRACKING
# ============================================================================

def test_track_import_run_success(importer, repository):
    with track_import_run(repository, "SUP-1", "csv:test.csv") as run:
        update_run_counts(run, importer.import_csv("SUP-1", SCENARIO_CSV, NO_ENRICH))

    stored = repository.list_import_runs(supplier_id="SUP-1")[0]
    assert stored.status == ImportRunStatus.SUCCESS
    assert stored.success_count == 1
    assert stored.completed_at is not None


def test_track_import_run_failure(repository):
    with pytest.raises(RuntimeError):
        with track_import_run(repository, "SUP-1", "api"):
            raise RuntimeError("feed unreachable")

    stored = repository.list_import_runs()[0]
    assert stored.status == ImportRunStatus.FAILED
    assert stored.error_message == "feed unreachable"


def test_final_status(repository):
    with track_import_run(repository, "SUP-1", "api") as run:
        run.success_count, run.failed_count = 3, 1
    assert final_status(run) == ImportRunStatus.PARTIAL

    run.success_count = 0
    assert final_status(run) == ImportRunStatus.FAILED
