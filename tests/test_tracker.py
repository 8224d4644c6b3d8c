import pytest
import requests

from conftest import BASE_TIME, FakeResponse, FakeSession, log_line
from errors import SendFailure
from log_utils import parse_log_line
from tracker import TrackingClient, build_tracking_params


def test_page_view_params():
    """Plain requests become page views on the configured host."""
    record = parse_log_line(log_line(BASE_TIME, path='/shop/cart?id=3', ip='8.8.8.8'))

    params = build_tracking_params(record, 7, 'secret', site_host='shop.example')

    assert params['url'] == 'http://shop.example/shop/cart?id=3'
    assert params['action_name'] == 'shop/cart'
    assert params['idsite'] == '7'
    assert params['rec'] == '1'
    assert params['cip'] == '8.8.8.8'
    assert params['ua'] == 'Mozilla/5.0'
    assert params['token_auth'] == 'secret'
    assert 'urlref' not in params


def test_tracker_hit_params_are_forwarded():
    """Tracker hits keep their parameters but not their site or time."""
    path = '/matomo.php?idsite=3&rec=1&url=http%3A%2F%2Fshop.example%2Fcart&action_name=Cart&cdt=2020-01-01&_id=abc'
    record = parse_log_line(log_line(BASE_TIME, path=path))

    params = build_tracking_params(record, 7)

    assert params['idsite'] == '7'
    assert params['url'] == 'http://shop.example/cart'
    assert params['action_name'] == 'Cart'
    assert params['_id'] == 'abc'
    assert 'cdt' not in params
    assert 'token_auth' not in params


def test_send_success():
    session = FakeSession()
    client = TrackingClient('http://matomo.local/', 1, timeout=3, session=session)
    record = parse_log_line(log_line(BASE_TIME))

    assert client.send(record) == 204
    assert session.calls[0]['url'] == 'http://matomo.local/matomo.php'
    assert session.calls[0]['timeout'] == 3
    assert session.calls[0]['params']['idsite'] == '1'


def test_send_timeout_raises_send_failure():
    session = FakeSession(error=requests.Timeout('read timed out'))
    client = TrackingClient('http://matomo.local', 1, session=session)
    record = parse_log_line(log_line(BASE_TIME))

    with pytest.raises(SendFailure) as exc_info:
        client(record)

    assert exc_info.value.record == record


def test_send_http_error_raises_send_failure():
    session = FakeSession(response=FakeResponse(500))
    client = TrackingClient('http://matomo.local', 1, session=session)

    with pytest.raises(SendFailure):
        client.send(parse_log_line(log_line(BASE_TIME)))


def test_close_closes_session():
    session = FakeSession()
    client = TrackingClient('http://matomo.local', 1, session=session)

    client.close()

    assert session.closed
