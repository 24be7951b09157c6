import unittest
from types import SimpleNamespace

from stockroom.errors import ValidationError
from stockroom.services.query_service import (
    ASC,
    DEFAULT_PRODUCT_SORT,
    DESC,
    PRODUCT_SORT_FIELDS,
    SortKey,
    filter_products,
    filter_sales,
    low_stock,
    parse_sort_param,
    sort_records,
    toggle_sort,
)


def _product(id, name, category="General", sku=None, description=None, stock=10, min_stock=2, price=100):
    return SimpleNamespace(
        id=id,
        name=name,
        category=category,
        sku=sku or f"SKU-{id}",
        description=description,
        stock=stock,
        min_stock=min_stock,
        sell_price_cents=price,
    )


class ToggleSortTests(unittest.TestCase):
    def test_plain_click_cycles_asc_desc_removed(self):
        keys = toggle_sort([], "name")
        self.assertEqual(keys, [SortKey("name", ASC)])
        keys = toggle_sort(keys, "name")
        self.assertEqual(keys, [SortKey("name", DESC)])
        keys = toggle_sort(keys, "name")
        self.assertEqual(keys, [])

    def test_plain_click_replaces_other_keys(self):
        keys = toggle_sort(list(DEFAULT_PRODUCT_SORT), "stock")
        self.assertEqual(keys, [SortKey("stock", ASC)])

    def test_plain_click_on_active_secondary_key_cycles_it_alone(self):
        # name is asc inside the default list; a plain click moves it to desc and drops category
        keys = toggle_sort(list(DEFAULT_PRODUCT_SORT), "name")
        self.assertEqual(keys, [SortKey("name", DESC)])

    def test_additive_click_appends_then_cycles_in_place(self):
        keys = [SortKey("category", ASC)]
        keys = toggle_sort(keys, "stock", additive=True)
        self.assertEqual(keys, [SortKey("category", ASC), SortKey("stock", ASC)])
        keys = toggle_sort(keys, "category", additive=True)
        self.assertEqual(keys, [SortKey("category", DESC), SortKey("stock", ASC)])
        keys = toggle_sort(keys, "category", additive=True)
        self.assertEqual(keys, [SortKey("stock", ASC)])

    def test_input_not_mutated(self):
        active = [SortKey("name", ASC)]
        toggle_sort(active, "name", additive=True)
        self.assertEqual(active, [SortKey("name", ASC)])

    def test_bad_direction(self):
        with self.assertRaises(ValidationError):
            SortKey("name", "sideways")


class SortRecordsTests(unittest.TestCase):
    def setUp(self):
        self.products = [
            _product(1, "banana", category="Fruit", stock=5),
            _product(2, "Apple", category="Fruit", stock=5),
            _product(3, "carrot", category="Veg", stock=1),
            _product(4, "apple", category="Fruit", stock=9),
        ]

    def test_zero_keys_keeps_input_order(self):
        result = sort_records(self.products, [])
        self.assertEqual([p.id for p in result], [1, 2, 3, 4])
        self.assertIsNot(result, self.products)

    def test_strings_case_insensitive_and_stable(self):
        result = sort_records(self.products, [SortKey("name", ASC)])
        # "Apple" and "apple" tie; input order (2 before 4) is kept
        self.assertEqual([p.id for p in result], [2, 4, 1, 3])

    def test_desc_reverses_tie_free_key(self):
        asc = sort_records(self.products, [SortKey("id", ASC)])
        desc = sort_records(self.products, [SortKey("id", DESC)])
        self.assertEqual([p.id for p in desc], list(reversed([p.id for p in asc])))

    def test_desc_keeps_ties_in_input_order(self):
        result = sort_records(self.products, [SortKey("stock", DESC)])
        self.assertEqual([p.id for p in result], [4, 1, 2, 3])

    def test_multi_key(self):
        result = sort_records(self.products, [SortKey("category", ASC), SortKey("stock", DESC)])
        self.assertEqual([p.id for p in result], [4, 1, 2, 3])

    def test_none_sorts_first(self):
        records = [_product(1, "a", description="zeta"), _product(2, "b"), _product(3, "c", description="Alpha")]
        result = sort_records(records, [SortKey("description", ASC)])
        self.assertEqual([p.id for p in result], [2, 3, 1])

    def test_input_not_mutated(self):
        before = [p.id for p in self.products]
        sort_records(self.products, [SortKey("name", DESC)])
        self.assertEqual([p.id for p in self.products], before)


class ParseSortParamTests(unittest.TestCase):
    def test_default_when_missing(self):
        self.assertEqual(parse_sort_param(None, PRODUCT_SORT_FIELDS, DEFAULT_PRODUCT_SORT), list(DEFAULT_PRODUCT_SORT))
        self.assertEqual(parse_sort_param("  ", PRODUCT_SORT_FIELDS), [])

    def test_parses_fields_and_directions(self):
        keys = parse_sort_param("stock:desc, name", PRODUCT_SORT_FIELDS)
        self.assertEqual(keys, [SortKey("stock", DESC), SortKey("name", ASC)])

    def test_rejects_unknown_field(self):
        with self.assertRaises(ValidationError):
            parse_sort_param("password:asc", PRODUCT_SORT_FIELDS)

    def test_rejects_repeated_field(self):
        with self.assertRaises(ValidationError):
            parse_sort_param("name:asc,name:desc", PRODUCT_SORT_FIELDS)


class FilterTests(unittest.TestCase):
    def setUp(self):
        self.products = [
            _product(1, "Blue Pen", category="Stationery", sku="PEN-B", description="Ballpoint"),
            _product(2, "Notebook", category="Stationery", sku="NB-1", description="Dotted, blue cover"),
            _product(3, "Mouse", category="Peripherals", sku="MS-9", stock=1, min_stock=2),
            _product(4, "Cable", category="Accessories", sku="CB-BLUE", stock=2, min_stock=2),
        ]

    def test_text_matches_name_sku_or_description(self):
        result = filter_products(self.products, "blue")
        self.assertEqual([p.id for p in result], [1, 2, 4])

    def test_category_all_means_no_filter(self):
        self.assertEqual(len(filter_products(self.products, "", "All")), 4)
        self.assertEqual(len(filter_products(self.products, None, "")), 4)

    def test_category_filter(self):
        result = filter_products(self.products, "", "Stationery")
        self.assertEqual([p.id for p in result], [1, 2])

    def test_low_stock_includes_equal_to_minimum(self):
        self.assertEqual([p.id for p in low_stock(self.products)], [3, 4])

    def test_filter_sales(self):
        sales = [
            SimpleNamespace(document_number="S-000001", customer_name="Ana", processed_by="clerk", payment_method="CASH"),
            SimpleNamespace(document_number="S-000002", customer_name=None, processed_by="ana.b", payment_method="CARD"),
            SimpleNamespace(document_number="S-000003", customer_name="Bo", processed_by=None, payment_method="CARD"),
        ]
        self.assertEqual([s.document_number for s in filter_sales(sales, "ana")], ["S-000001", "S-000002"])
        self.assertEqual([s.document_number for s in filter_sales(sales, "", "card")], ["S-000002", "S-000003"])
        self.assertEqual(len(filter_sales(sales, None, "All")), 3)


if __name__ == "__main__":
    unittest.main()
