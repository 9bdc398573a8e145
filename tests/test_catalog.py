"""
Tests for product catalog import.
"""
import os
import shutil
import tempfile
from decimal import Decimal

import pytest

from breakage_export.core.catalog import import_products, parse_product_line
from breakage_export.storage.models import UnitType
from breakage_export.storage.repository import EntryRepository, initialize_schema


class TestParseProductLine:
    """Test parsing of single catalog lines."""

    def test_full_line(self):
        product = parse_product_line("7891000053607|ARROZ 5KG|kg|12.90|11,61")
        assert product.code == "7891000053607"
        assert product.name == "ARROZ 5KG"
        assert product.unit_type == UnitType.WEIGHT
        assert product.regular_price == Decimal("12.90")
        assert product.club_price == Decimal("11.61")

    def test_prices_optional(self):
        product = parse_product_line(" 123 | LEITE | UN ")
        assert product.code == "123"
        assert product.unit_type == UnitType.UNIT
        assert product.regular_price is None
        assert product.club_price is None

    @pytest.mark.parametrize("line", ["123|LEITE", "123|LEITE|LT", "123|LEITE|UN|abc", "|LEITE|UN"])
    def test_invalid_lines(self, line):
        with pytest.raises(ValueError):
            parse_product_line(line)


class TestImportProducts:
    """Test importing a whole catalog."""

    def setup_method(self):
        self.temp_dir = tempfile.mkdtemp()
        self.db_path = os.path.join(self.temp_dir, "test.db")
        initialize_schema(self.db_path)
        self.repo = EntryRepository(self.db_path)

    def teardown_method(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_valid_and_invalid_lines(self):
        lines = [
            "123|LEITE|UN|4.85\n",
            "\n",
            "456|BANANA|XX\n",
            "789|ARROZ|KG\n",
        ]
        result = import_products(lines, self.repo)

        assert result.count == 2
        assert len(result.errors) == 1
        assert "456|BANANA|XX" in result.errors[0]
        assert "2 produtos importados com sucesso" in result.message
        assert "1 erros encontrados" in result.message
        assert self.repo.get_product_by_code("789").unit_type == UnitType.WEIGHT
        assert self.repo.get_product_by_code("456") is None
