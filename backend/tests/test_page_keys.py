import pytest
from opsgate.errors import ValidationError
from opsgate.utils.page_keys import encode_page_key, decode_page_key, normalize_page_path


def test_plain_path_encodes_with_separator():
    assert encode_page_key('/warehouse/invoices') == 'warehouse_invoices'
    assert decode_page_key('warehouse_invoices') == '/warehouse/invoices'


def test_underscore_paths_do_not_collide():
    a = encode_page_key('/a_b/c')
    b = encode_page_key('/a/b_c')
    assert a != b
    assert decode_page_key(a) == '/a_b/c'
    assert decode_page_key(b) == '/a/b_c'


def test_percent_is_escaped_before_underscore():
    key = encode_page_key('/reports/50%5F_off')
    assert decode_page_key(key) == '/reports/50%5F_off'


def test_hyphenated_catalog_paths_round_trip():
    path = '/finished-goods/direct-shop-requests'
    assert decode_page_key(encode_page_key(path)) == path


def test_normalize_strips_trailing_slash():
    assert normalize_page_path('/approvals/') == '/approvals'
    assert normalize_page_path('  /dashboard ') == '/dashboard'


@pytest.mark.parametrize('bad', ['', '   ', 'dashboard', '/a//b', None])
def test_normalize_rejects_malformed(bad):
    with pytest.raises(ValidationError):
        normalize_page_path(bad)
