"""Tests for the inbound payload models and their place in the package."""

import ast
from pathlib import Path

import pytest
from pydantic import ValidationError

import settlement_engine.services
from settlement_engine.services.payloads import CardWebhookContent, CommerceOrder

SERVICES_DIR = Path(settlement_engine.services.__file__).parent


def _imported_modules(path: Path) -> set[str]:
    tree = ast.parse(path.read_text())
    modules = set()
    for node in ast.walk(tree):
        if isinstance(node, ast.ImportFrom) and node.module:
            modules.add(node.module)
        elif isinstance(node, ast.Import):
            modules.update(alias.name for alias in node.names)
    return modules


@pytest.mark.parametrize("path", sorted(SERVICES_DIR.glob("*.py")), ids=lambda p: p.name)
def test_services_do_not_import_api_layer(path: Path):
    imported = _imported_modules(path)

    assert not [m for m in imported if m.startswith("settlement_engine.api")]


class TestCommerceOrder:
    def test_currency_is_normalized(self):
        order = CommerceOrder(id=1, total_price="10.00", currency=" usd ")
        assert order.currency == "USD"

    @pytest.mark.parametrize("overrides", [{"id": 0}, {"currency": "DOLLARS"}, {"total_price": "-1"}])
    def test_rejects_invalid_orders(self, overrides):
        with pytest.raises(ValidationError):
            CommerceOrder(**{"id": 1, "total_price": "10.00", **overrides})

    def test_unknown_fields_are_ignored(self):
        order = CommerceOrder(id=1, total_price="1.00", tags="vip", note=None)
        assert not hasattr(order, "tags")


def test_card_content_reads_external_reference():
    item = CardWebhookContent.model_validate({"idOrderExt": 1001, "status": "paid"})

    assert item.order_ref == "1001"
