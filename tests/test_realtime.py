import pytest

from marketplace.realtime import parse_order_id


@pytest.mark.parametrize("data, expected", [(7, 7), ("7", 7), ("0042", 42)])
def test_parse_order_id_accepts_integers(data, expected):
    assert parse_order_id(data) == expected


@pytest.mark.parametrize("data", [7.9, 7.0, True, False, None, "", "7.9", "-1", "٣", [7], {"id": 7}])
def test_parse_order_id_rejects_everything_else(data):
    with pytest.raises(ValueError):
        parse_order_id(data)
