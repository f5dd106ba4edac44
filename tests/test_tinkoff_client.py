import asyncio
import unittest
from datetime import datetime, timezone

import httpx

from config.settings import Settings
from services.tinkoff.client import (
    MissingCredentialError,
    TinkoffApiError,
    TinkoffClient,
    build_client,
    hash_token,
)

BASE = "https://broker.test/openapi"


def _ok(payload):
    return httpx.Response(200, json={"trackingId": "t", "status": "Ok", "payload": payload})


class TestTinkoffClient(unittest.TestCase):
    def setUp(self):
        self.requests = []

    def _run(self, handler, call):
        async def go():
            def record(request):
                self.requests.append(request)
                return handler(request)

            async with httpx.AsyncClient(transport=httpx.MockTransport(record)) as http:
                client = TinkoffClient("secret-token", base_url=BASE + "/", client=http)
                return await call(client)

        return asyncio.run(go())

    def test_accounts(self):
        accounts = self._run(
            lambda r: _ok({"accounts": [{"brokerAccountType": "Tinkoff", "brokerAccountId": "2000"}]}),
            lambda c: c.accounts(),
        )
        self.assertEqual([a.brokerAccountId for a in accounts], ["2000"])
        request = self.requests[0]
        self.assertEqual(request.url.host, "broker.test")
        self.assertEqual(request.url.path, "/openapi/user/accounts")
        self.assertEqual(request.headers["Authorization"], "Bearer secret-token")

    def test_account_scope_sends_account_id(self):
        payload = {
            "positions": [
                {
                    "figi": "BBG000B9XRY4",
                    "ticker": "AAPL",
                    "instrumentType": "Stock",
                    "balance": 3,
                    "lots": 3,
                    "averagePositionPrice": {"currency": "USD", "value": 120.5},
                }
            ]
        }
        positions = self._run(lambda r: _ok(payload), lambda c: c.for_account("2000").portfolio())

        self.assertEqual(positions[0].ticker, "AAPL")
        self.assertEqual(positions[0].averagePositionPrice.value, 120.5)
        self.assertEqual(self.requests[0].url.params["brokerAccountId"], "2000")

    def test_operations_query(self):
        payload = {
            "operations": [
                {
                    "id": "1",
                    "status": "Done",
                    "operationType": "Buy",
                    "payment": -100,
                    "currency": "RUB",
                    "figi": "F1",
                    "quantity": 1,
                    "date": "2021-03-01T10:00:00+03:00",
                }
            ]
        }
        start = datetime(1970, 1, 1, tzinfo=timezone.utc)
        end = datetime(2021, 6, 1, tzinfo=timezone.utc)
        ops = self._run(lambda r: _ok(payload), lambda c: c.for_account("2000").operations(start, end))

        self.assertEqual(ops[0].payment, -100)
        params = self.requests[0].url.params
        self.assertEqual(params["from"], "1970-01-01T00:00:00+00:00")
        self.assertEqual(params["to"], "2021-06-01T00:00:00+00:00")
        self.assertEqual(params["brokerAccountId"], "2000")

    def test_last_price(self):
        price = self._run(lambda r: _ok({"figi": "F1", "lastPrice": 12.3}), lambda c: c.last_price("F1"))
        self.assertEqual(price, 12.3)
        self.assertEqual(self.requests[0].url.params["depth"], "1")

    def test_last_price_missing(self):
        price = self._run(lambda r: _ok({"figi": "F1"}), lambda c: c.last_price("F1"))
        self.assertIsNone(price)

    def test_search_by_figi_unknown(self):
        found = self._run(lambda r: _ok({}), lambda c: c.search_by_figi("F1"))
        self.assertIsNone(found)

    def test_error_envelope(self):
        def handler(request):
            return httpx.Response(
                500,
                json={"status": "Error", "payload": {"message": "Account not found", "code": "Error"}},
            )

        with self.assertRaises(TinkoffApiError) as ctx:
            self._run(handler, lambda c: c.for_account("x").portfolio())
        self.assertEqual(str(ctx.exception), "Account not found")
        self.assertEqual(ctx.exception.status_code, 500)
        self.assertEqual(ctx.exception.path, "/portfolio")

    def test_error_status_in_ok_response(self):
        with self.assertRaises(TinkoffApiError):
            self._run(lambda r: httpx.Response(200, json={"status": "Error", "payload": {}}), lambda c: c.accounts())

    def test_non_json_error(self):
        with self.assertRaises(TinkoffApiError) as ctx:
            self._run(lambda r: httpx.Response(401, text="Unauthorized"), lambda c: c.accounts())
        self.assertEqual(ctx.exception.status_code, 401)

    def test_transport_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with self.assertRaises(TinkoffApiError) as ctx:
            self._run(handler, lambda c: c.accounts())
        self.assertIsNone(ctx.exception.status_code)


class TestCredential(unittest.TestCase):
    def test_blank_token_rejected(self):
        with self.assertRaises(MissingCredentialError):
            TinkoffClient("  ")

    def test_cache_keys_hide_token(self):
        client = TinkoffClient("secret-token")
        key = client.key_for("lastPrice", "F1")

        self.assertNotIn("secret-token", key)
        self.assertEqual(key, f"{hash_token('secret-token')}:lastPrice:F1")
        self.assertEqual(client.key_for("accounts"), f"{hash_token('secret-token')}:accounts")

    def test_build_client_picks_environment(self):
        settings = Settings(
            prod_api_url="https://prod.test/api",
            sandbox_api_url="https://sandbox.test/api",
            http_timeout_sec=2.5,
        )

        prod = build_client("tok", sandbox=False, settings=settings)
        sandbox = build_client("tok", sandbox=True, settings=settings)

        self.assertEqual(prod.base_url, "https://prod.test/api")
        self.assertEqual(sandbox.base_url, "https://sandbox.test/api")
        self.assertEqual(sandbox.timeout, 2.5)

    def test_keys_differ_per_credential(self):
        self.assertNotEqual(TinkoffClient("a").key_for("accounts"), TinkoffClient("b").key_for("accounts"))


if __name__ == "__main__":
    unittest.main()
