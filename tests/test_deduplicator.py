"""
Unit tests for multi-source deduplication.
"""
from models import CatalogSourceName, IngredientSafety, Sustainability
from deduplicator import deduplicate, identity_key, merge_records, normalize_key_part


class TestIdentityKey:
    """Test identity key derivation."""

    def test_upc_wins_over_name(self, make_record):
        """Records with a barcode are keyed by it."""
        assert identity_key(make_record(upc=' 0123 ')) == 'upc:0123'

    def test_blank_upc_falls_back_to_brand_and_name(self, make_record):
        """Whitespace-only upc counts as missing."""
        key = identity_key(make_record(upc='  ', brand="L'Oréal Paris", name='Elvive Shampoo'))
        assert key.startswith('brand_name:')

    def test_normalization_ignores_case_and_punctuation(self, make_record):
        """Brand/name keys drop case, spaces and punctuation."""
        a = make_record(brand='Shea Moisture', name='Curl & Shine!')
        b = make_record(brand='SHEA-MOISTURE', name='curl shine')
        assert identity_key(a) == identity_key(b)
        assert normalize_key_part(None) == ''


class TestMerge:
    """Test field-level merge rules."""

    def test_shared_upc_merges_and_keeps_first_brand(self, make_record):
        """Two records with upc '123' collapse to one carrying brand 'X'."""
        a = make_record(id='a', upc='123', name='A', brand='X')
        b = make_record(id='b', upc='123', name='B', brand='')
        result = deduplicate([a, b])
        assert len(result) == 1
        assert result[0].brand == 'X'
        assert result[0].id == 'a'

    def test_scalars_fill_from_later_record(self, make_record):
        """Empty scalars on the first record are filled from the second."""
        a = make_record(upc='1', description=None, price=None)
        b = make_record(upc='1', description='Gentle cleanser', price=12.5)
        merged = merge_records(a, b)
        assert merged.description == 'Gentle cleanser'
        assert merged.price == 12.5

    def test_zero_price_is_not_empty(self, make_record):
        """A price of 0 is a real value and is kept."""
        merged = merge_records(make_record(upc='1', price=0.0), make_record(upc='1', price=9.0))
        assert merged.price == 0.0

    def test_lists_are_ordered_union(self, make_record):
        """Tags and ingredients combine without duplicates, first-seen order."""
        a = make_record(upc='1', tags=['curly', 'vegan'], ingredients=['Aqua', 'Glycerin'])
        b = make_record(upc='1', tags=['Vegan', 'organic'], ingredients=['Glycerin', 'Argan Oil'])
        merged = merge_records(a, b)
        assert merged.tags == ['curly', 'vegan', 'organic']
        assert merged.ingredients == ['Aqua', 'Glycerin', 'Argan Oil']
        assert 'argan oil' in merged.normalized_ingredients

    def test_subrecords_taken_whole(self, make_record):
        """Enrichment sub-records are never field-merged."""
        safety = IngredientSafety(score=40)
        eco = Sustainability(score=70, grade='B')
        a = make_record(upc='1', ingredient_safety=safety)
        b = make_record(upc='1', ingredient_safety=IngredientSafety(score=90), sustainability=eco)
        merged = merge_records(a, b)
        assert merged.ingredient_safety == safety
        assert merged.sustainability == eco

    def test_source_stays_with_first(self, make_record):
        a = make_record(upc='1', source=CatalogSourceName.OPEN_BEAUTY_FACTS)
        b = make_record(upc='1', source=CatalogSourceName.BEAUTY_FEEDS)
        assert merge_records(a, b).source == CatalogSourceName.OPEN_BEAUTY_FACTS

    def test_inputs_not_mutated(self, make_record):
        a = make_record(upc='1', tags=['a'])
        b = make_record(upc='1', tags=['b'])
        merge_records(a, b)
        assert a.tags == ['a']


class TestDeduplicate:
    """Test whole-list deduplication."""

    def test_idempotent(self, catalog, make_record):
        """Running twice equals running once."""
        records = catalog + [make_record(upc='111', name='Curl Cream Dup', tags=['new'])]
        once = deduplicate(records)
        assert deduplicate(once) == once

    def test_preserves_first_seen_order(self, make_record):
        records = [make_record(upc='2'), make_record(upc='1'), make_record(upc='2')]
        assert [r.upc for r in deduplicate(records)] == ['2', '1']

    def test_near_duplicate_names_stay_separate(self, make_record):
        """Size suffixes are not fuzzy-matched."""
        records = [make_record(name='Shampoo 250ml'), make_record(name='Shampoo')]
        assert len(deduplicate(records)) == 2

    def test_empty_input(self):
        assert deduplicate([]) == []
