"""
Unit tests for index API response classification (mocked HTTP session).
"""
from unittest.mock import MagicMock

import pytest
import requests

from debt_tracker.services.debt_engine.errors import (
    IndexApiError, MalformedPayloadError, RateLimitedError, TransientIndexError,
)
from debt_tracker.services.debt_engine.models import IndexStatus
from debt_tracker.services.index_client import BasescanClient

from conftest import CONTRACT, W1, index_row


def make_response(status_code=200, payload=None, json_error=False, text=""):
    response = MagicMock()
    response.status_code = status_code
    response.text = text
    if json_error:
        response.json.side_effect = ValueError("No JSON object could be decoded")
    else:
        response.json.return_value = payload
    return response


def client_returning(response=None, side_effect=None) -> BasescanClient:
    session = MagicMock()
    if side_effect is not None:
        session.get.side_effect = side_effect
    else:
        session.get.return_value = response
    return BasescanClient(api_key="TESTKEY12345", rate_limit_delay=0, session=session)


class TestRequestParameters:

    def test_query_parameters(self):
        client = client_returning(make_response(payload={'status': '1', 'message': 'OK', 'result': []}))
        client.get_transactions_page(CONTRACT, start_block=123, page=4, offset=200)

        params = client.session.get.call_args.kwargs['params']
        assert params['chainid'] == 8453
        assert params['module'] == 'account'
        assert params['action'] == 'txlist'
        assert params['address'] == CONTRACT
        assert params['startblock'] == 123
        assert params['page'] == 4
        assert params['offset'] == 200
        assert params['sort'] == 'asc'
        assert params['apikey'] == "TESTKEY12345"

    def test_is_configured(self):
        assert BasescanClient(api_key="k", session=MagicMock()).is_configured
        assert not BasescanClient(api_key="", session=MagicMock()).is_configured


class TestResponseClassification:

    def test_ok_page(self):
        rows = [index_row(1, W1), index_row(2, W1)]
        client = client_returning(make_response(payload={'status': '1', 'message': 'OK', 'result': rows}))
        page = client.get_transactions_page(CONTRACT)
        assert page.status == IndexStatus.OK
        assert len(page.transactions) == 2

    def test_no_transactions_found_is_exhausted(self):
        payload = {'status': '0', 'message': 'No transactions found', 'result': []}
        page = client_returning(make_response(payload=payload)).get_transactions_page(CONTRACT)
        assert page.is_exhausted

    def test_empty_ok_result_is_exhausted(self):
        payload = {'status': '1', 'message': 'OK', 'result': []}
        assert client_returning(make_response(payload=payload)).get_transactions_page(CONTRACT).is_exhausted

    def test_rate_limit_message(self):
        payload = {'status': '0', 'message': 'NOTOK', 'result': 'Max rate limit reached'}
        with pytest.raises(RateLimitedError) as exc_info:
            client_returning(make_response(payload=payload)).get_transactions_page(CONTRACT)
        assert exc_info.value.retryable

    def test_http_429(self):
        with pytest.raises(RateLimitedError):
            client_returning(make_response(status_code=429)).get_transactions_page(CONTRACT)

    def test_http_5xx_is_transient(self):
        with pytest.raises(TransientIndexError) as exc_info:
            client_returning(make_response(status_code=502)).get_transactions_page(CONTRACT)
        assert exc_info.value.status_code == 502
        assert exc_info.value.retryable

    def test_network_error_is_transient(self):
        client = client_returning(side_effect=requests.exceptions.ConnectionError("reset"))
        with pytest.raises(TransientIndexError):
            client.get_transactions_page(CONTRACT)

    def test_timeout_is_transient(self):
        client = client_returning(side_effect=requests.exceptions.Timeout("slow"))
        with pytest.raises(TransientIndexError):
            client.get_transactions_page(CONTRACT)

    def test_non_list_result_is_malformed(self):
        payload = {'status': '1', 'message': 'OK', 'result': 'unexpected'}
        with pytest.raises(MalformedPayloadError) as exc_info:
            client_returning(make_response(payload=payload)).get_transactions_page(CONTRACT)
        assert not exc_info.value.retryable

    def test_non_object_body_is_malformed(self):
        with pytest.raises(MalformedPayloadError):
            client_returning(make_response(payload=[1, 2, 3])).get_transactions_page(CONTRACT)

    def test_non_object_rows_are_malformed(self):
        payload = {'status': '1', 'message': 'OK', 'result': ["0xabc"]}
        with pytest.raises(MalformedPayloadError):
            client_returning(make_response(payload=payload)).get_transactions_page(CONTRACT)

    def test_invalid_json_is_malformed(self):
        with pytest.raises(MalformedPayloadError):
            client_returning(make_response(json_error=True, text="<html>")).get_transactions_page(CONTRACT)

    def test_invalid_api_key_is_not_retryable(self):
        payload = {'status': '0', 'message': 'NOTOK', 'result': 'Invalid API Key'}
        with pytest.raises(IndexApiError) as exc_info:
            client_returning(make_response(payload=payload)).get_transactions_page(CONTRACT)
        assert not exc_info.value.retryable
        assert not isinstance(exc_info.value, (RateLimitedError, TransientIndexError))

    def test_http_4xx_is_not_retryable(self):
        with pytest.raises(IndexApiError) as exc_info:
            client_returning(make_response(status_code=403, text="forbidden")).get_transactions_page(CONTRACT)
        assert not exc_info.value.retryable
