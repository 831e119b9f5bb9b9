from __future__ import annotations

import json
import unittest

import httpx
from fastapi.testclient import TestClient
from redis.exceptions import ConnectionError as RedisConnectionError

from pantry_gateway.cache import MemoryCacheBackend, RedisCacheBackend
from pantry_gateway.main import create_app

from fake_backend import FakeGrocy, make_settings

AUTH = {"Authorization": "Bearer test-token"}


class GatewayApiTestCase(unittest.TestCase):
    settings_overrides: dict = {}

    raise_server_exceptions = True

    def make_cache_backend(self):
        return MemoryCacheBackend()

    def setUp(self):
        self.fake = FakeGrocy()
        self.settings = make_settings(**self.settings_overrides)
        app = create_app(
            self.settings,
            backend=self.fake.client(self.settings),
            cache_backend=self.make_cache_backend(),
        )
        self.client = TestClient(app, raise_server_exceptions=self.raise_server_exceptions)
        self.client.__enter__()
        self.addCleanup(self.client.__exit__, None, None, None)

    def post(self, path: str, payload=None, **kwargs):
        return self.client.post(path, json=payload, headers=AUTH, **kwargs)

    def get(self, path: str, **kwargs):
        return self.client.get(path, headers=AUTH, **kwargs)


class AccessTest(GatewayApiTestCase):
    def test_missing_token(self):
        resp = self.client.get("/api/enriched/stock")
        self.assertEqual(resp.status_code, 401)
        self.assertEqual(resp.json(), {"error": "unauthorized"})
        self.assertEqual(self.fake.calls, [])

    def test_wrong_token(self):
        resp = self.client.get("/api/objects/products", headers={"Authorization": "Bearer nope"})
        self.assertEqual(resp.status_code, 401)
        self.assertEqual(self.fake.calls, [])

    def test_unsupported_method(self):
        resp = self.client.delete("/api/objects/products/1", headers=AUTH)
        self.assertEqual(resp.status_code, 405)
        self.assertEqual(resp.json(), {"error": "method_not_allowed"})
        self.assertEqual(self.fake.calls, [])

    def test_unsupported_method_on_enriched_path(self):
        resp = self.client.put("/api/enriched/stock", headers=AUTH)
        self.assertEqual(resp.status_code, 405)
        self.assertEqual(resp.json(), {"error": "method_not_allowed"})

    def test_token_checked_before_method(self):
        resp = self.client.delete("/api/objects/products/1")
        self.assertEqual(resp.status_code, 401)
        self.assertEqual(resp.json(), {"error": "unauthorized"})

    def test_unknown_prefix(self):
        resp = self.client.get("/elsewhere", headers=AUTH)
        self.assertEqual(resp.status_code, 404)
        self.assertEqual(resp.json(), {"error": "not_found"})

    def test_health_is_open(self):
        resp = self.client.get("/health")
        self.assertEqual(resp.status_code, 200)
        self.assertTrue(resp.json()["upstream_configured"])


class MisconfiguredTest(GatewayApiTestCase):
    settings_overrides = {"grocy_api_key": None, "environment": "dev"}

    def test_requests_rejected_until_configured(self):
        resp = self.get("/api/enriched/stock")
        self.assertEqual(resp.status_code, 500)
        self.assertEqual(resp.json(), {"error": "server_misconfigured", "missing": ["GROCY_API_KEY"]})


class InputValidationTest(GatewayApiTestCase):
    def test_malformed_json(self):
        resp = self.client.post(
            "/api/enriched/stock/add",
            content=b"{not json",
            headers={**AUTH, "Content-Type": "application/json"},
        )
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json()["error"], "invalid_json")
        self.assertEqual(self.fake.calls, [])

    def test_amount_must_be_a_number(self):
        resp = self.post("/api/enriched/stock/add", {"product": "Milk", "amount": "2"})
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json()["error"], "invalid_request")
        self.assertEqual(self.fake.calls, [])

    def test_bulk_requires_items(self):
        resp = self.post("/api/enriched/stock/add/bulk", {"items": []})
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json()["error"], "invalid_request")


class ShoppingListApiTest(GatewayApiTestCase):
    def setUp(self):
        super().setUp()
        self.milk, _ = self.fake.add_products("Milk", "Milk Substitute")

    def test_add_item(self):
        resp = self.post("/api/enriched/shopping_list/add", {"product": "milk", "amount": 2, "note": "blue cap"})
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(
            resp.json(),
            {
                "status": "added",
                "list": {"id": 1, "name": "Weekly"},
                "item": {"product_id": self.milk["id"], "product_name": "Milk", "amount": 2, "note": "blue cap"},
            },
        )
        self.assertEqual(
            self.fake.bodies[-1][2],
            {"product_id": self.milk["id"], "product_amount": 2, "note": "blue cap", "list_id": 1},
        )

    def test_multiple_lists_require_a_choice(self):
        self.fake.shopping_lists.append({"id": 2, "name": "Party"})
        resp = self.post("/api/enriched/shopping_list/add", {"product": "milk", "amount": 1})
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json()["error"], "multiple_lists")
        self.assertEqual(self.fake.writes(), [])

        resp = self.post("/api/enriched/shopping_list/add", {"product": "milk", "amount": 1, "shopping_list": "party"})
        self.assertEqual(resp.json()["list"], {"id": 2, "name": "Party"})

    def test_ambiguous_product(self):
        self.fake.add_products("Oat Drink", "Oat Flakes")
        resp = self.post("/api/enriched/shopping_list/add", {"product": "oat", "amount": 1})
        self.assertEqual(resp.status_code, 400)
        body = resp.json()
        self.assertEqual(body["error"], "multiple_products")
        self.assertEqual([p["name"] for p in body["products"]], ["Oat Drink", "Oat Flakes"])
        self.assertEqual(self.fake.writes(), [])

    def test_enriched_list_view(self):
        self.fake.shopping_list_items[1] = [{"id": 1, "product_id": self.milk["id"], "amount": 3}]
        resp = self.get("/api/enriched/shopping_list", params={"list_id": "1"})
        self.assertEqual(resp.status_code, 200)
        item = resp.json()["items"][0]
        self.assertEqual(item["product_name"], "Milk")
        self.assertEqual(item["pricing"]["price_unit"], "Pack")

    def test_backend_failure_is_structured(self):
        self.fake.fail("POST", "/api/stock/shoppinglist/add-product", status_code=500)
        resp = self.post("/api/enriched/shopping_list/add", {"product": "milk", "amount": 2})
        self.assertEqual(resp.status_code, 502)
        self.assertEqual(resp.json(), {"error": "backend_unavailable", "detail": "Failed to add item"})


class StockApiTest(GatewayApiTestCase):
    def test_stock_truncation_is_silent(self):
        (milk,) = self.fake.add_products("Milk")
        self.fake.stock = [{"id": n, "product_id": milk["id"], "amount": 1} for n in range(60)]
        resp = self.get("/api/enriched/stock")
        self.assertEqual(resp.status_code, 200)
        body = resp.json()
        self.assertIsInstance(body, list)
        self.assertEqual(len(body), 25)
        self.assertEqual(set(body[0]), {"stock_id", "product_id", "product_name", "amount", "best_before_date"})

    def test_bulk_add_response_shape(self):
        self.fake.add_products("Milk", "Eggs")
        resp = self.post(
            "/api/enriched/stock/add/bulk",
            {
                "items": [
                    {"line": 1, "product": "Milk", "amount": 1},
                    {"line": 2, "product": "Unobtainium", "amount": 1},
                    {"line": 3, "product": "Eggs", "amount": 6, "price": 2.99},
                ]
            },
        )
        self.assertEqual(resp.status_code, 200)
        body = resp.json()
        self.assertEqual(body["status"], "completed")
        self.assertEqual(body["summary"], {"total": 3, "added": 2, "errors": 1})
        self.assertEqual(
            body["results"][1],
            {"line": 2, "status": "error", "error": "product_not_found", "product": "Unobtainium"},
        )
        self.assertEqual(body["results"][2]["interpreted_as"], {"amount": 6, "unit": "Piece", "price": 2.99})
        self.assertNotIn("error", body["results"][0])

    def test_non_finite_amount_fails_only_its_line(self):
        milk, eggs = self.fake.add_products("Milk", "Eggs")
        resp = self.client.post(
            "/api/enriched/stock/add/bulk",
            content=(
                b'{"items": ['
                b'{"line": 1, "product": "Milk", "amount": 1},'
                b'{"line": 2, "product": "Eggs", "amount": NaN},'
                b'{"line": 3, "product": "Eggs", "amount": 2}'
                b"]}"
            ),
            headers={**AUTH, "Content-Type": "application/json"},
        )
        self.assertEqual(resp.status_code, 200)
        body = resp.json()
        self.assertEqual([r["status"] for r in body["results"]], ["added", "error", "added"])
        self.assertEqual(body["results"][1], {"line": 2, "status": "error", "error": "invalid_line"})
        self.assertEqual(body["summary"], {"total": 3, "added": 2, "errors": 1})
        self.assertEqual(self.fake.count("POST", f"/api/objects/products/{eggs['id']}/add"), 1)

    def test_non_finite_amount_is_an_invalid_request(self):
        self.fake.add_products("Milk")
        resp = self.client.post(
            "/api/enriched/stock/add",
            content=b'{"product": "Milk", "amount": Infinity}',
            headers={**AUTH, "Content-Type": "application/json"},
        )
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json()["error"], "invalid_request")
        self.assertEqual(self.fake.writes(), [])


class FailingRedis:
    """Async Redis stand-in whose every command fails to connect."""

    async def get(self, key):
        raise RedisConnectionError("connection refused")

    async def set(self, key, value, ex=None):
        raise RedisConnectionError("connection refused")

    async def delete(self, key):
        raise RedisConnectionError("connection refused")

    async def aclose(self):
        return None


class RedisOutageTest(GatewayApiTestCase):
    def make_cache_backend(self):
        return RedisCacheBackend(FailingRedis())

    def test_reads_fall_through_to_backend(self):
        self.fake.add_products("Milk")
        for _ in range(2):
            resp = self.get("/api/enriched/products/search", params={"q": "milk"})
            self.assertEqual(resp.status_code, 200)
            self.assertEqual([m["name"] for m in resp.json()["matches"]], ["Milk"])
        self.assertEqual(self.fake.count("GET", "/api/objects/products"), 2)

    def test_product_creation_survives_failed_invalidation(self):
        resp = self.post("/api/enriched/products/create", {"name": "Cheddar"})
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["status"], "created")


class UnexpectedErrorTest(GatewayApiTestCase):
    raise_server_exceptions = False

    def test_unexpected_error_is_structured(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise RuntimeError("transport bug")

        self.fake.respond("GET", "/api/objects/stock", handler)
        resp = self.get("/api/enriched/stock")
        self.assertEqual(resp.status_code, 500)
        self.assertEqual(resp.json(), {"error": "internal_error"})


class ProductApiTest(GatewayApiTestCase):
    def setUp(self):
        super().setUp()
        self.fake.add_products("Milk", "Milk Substitute", "Oat Milk")

    def test_search_ranks_with_confidence(self):
        resp = self.get("/api/enriched/products/search", params={"q": "Milk", "limit": "2"})
        self.assertEqual(resp.status_code, 200)
        matches = resp.json()["matches"]
        self.assertEqual([(m["name"], m["confidence"]) for m in matches], [("Milk", 1.0), ("Milk Substitute", 0.6)])

    def test_search_limit_is_capped(self):
        self.fake.add_products(*[f"Milk {n}" for n in range(20)])
        resp = self.get("/api/enriched/products/search", params={"q": "milk", "limit": "50"})
        self.assertEqual(len(resp.json()["matches"]), 10)

    def test_search_requires_query(self):
        resp = self.get("/api/enriched/products/search", params={"q": "  "})
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json(), {"error": "missing_query"})

    def test_create_product_is_visible_immediately(self):
        self.get("/api/enriched/products/search", params={"q": "cheddar"})
        resp = self.post(
            "/api/enriched/products/create",
            {"name": "Cheddar", "quantity_units": {"purchase": "pack"}, "product_group": "dairy"},
        )
        self.assertEqual(resp.status_code, 200)
        body = resp.json()
        self.assertEqual(body["status"], "created")
        self.assertEqual(body["location"], "Fridge")
        self.assertEqual(
            body["quantity_units"],
            {"stock": "Piece", "purchase": "Pack", "consume": "Piece", "price": "Piece"},
        )
        self.assertEqual(body["image"], {"attached": False, "error": None})

        created_payload = self.fake.bodies[-1][2]
        self.assertEqual(created_payload["location_id"], 2)
        self.assertEqual(created_payload["qu_id_purchase"], 2)
        self.assertEqual(created_payload["product_group_id"], 7)

        resp = self.get("/api/enriched/products/search", params={"q": "cheddar"})
        self.assertEqual([m["name"] for m in resp.json()["matches"]], ["Cheddar"])

    def test_duplicate_name_is_rejected(self):
        resp = self.post("/api/enriched/products/create", {"name": "OAT MILK!"})
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json(), {"error": "product_exists", "product": "OAT MILK!"})

    def test_unresolvable_unit_performs_no_writes(self):
        resp = self.post(
            "/api/enriched/products/create",
            {"name": "Cheddar", "quantity_units": {"consume": "Slice"}},
        )
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json(), {"error": "invalid_quantity_unit", "unit": "consume", "name": "Slice"})
        self.assertEqual(self.fake.count("POST", "/api/objects/products"), 0)
        self.assertEqual(self.fake.writes(), [])

    def test_unknown_location_and_group(self):
        resp = self.post("/api/enriched/products/create", {"name": "Cheddar", "default_location": "Garage"})
        self.assertEqual(resp.json(), {"error": "invalid_location", "location": "Garage"})

        resp = self.post("/api/enriched/products/create", {"name": "Cheddar", "product_group": "Cheeses"})
        self.assertEqual(resp.json(), {"error": "invalid_product_group", "product_group": "Cheeses"})
        self.assertEqual(self.fake.writes(), [])

    def test_image_attached(self):
        self.fake.images["https://img.test/cheddar.jpg"] = httpx.Response(
            200, content=b"\xff\xd8jpeg", headers={"content-type": "image/jpeg"}
        )
        resp = self.post(
            "/api/enriched/products/create",
            {"name": "Cheddar", "image_url": "https://img.test/cheddar.jpg"},
        )
        self.assertEqual(resp.json()["image"], {"attached": True, "error": None})
        product_id = resp.json()["product"]["id"]
        self.assertEqual(self.fake.count("POST", f"/api/files/productpictures/{product_id}"), 1)

    def test_image_failure_does_not_fail_creation(self):
        self.fake.images["https://img.test/page"] = httpx.Response(
            200, content=b"<html></html>", headers={"content-type": "text/html"}
        )
        resp = self.post(
            "/api/enriched/products/create",
            {"name": "Cheddar", "image_url": "https://img.test/page"},
        )
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["image"], {"attached": False, "error": "invalid content-type (text/html)"})

    def test_oversized_image_is_rejected(self):
        self.fake.images["https://img.test/huge.png"] = httpx.Response(
            200, content=b"x" * 16, headers={"content-type": "image/png", "content-length": "6000000"}
        )
        resp = self.post(
            "/api/enriched/products/create",
            {"name": "Cheddar", "image_url": "https://img.test/huge.png"},
        )
        self.assertEqual(resp.json()["image"]["error"], "image too large")


class PassthroughTest(GatewayApiTestCase):
    def test_forwards_path_query_and_credentials(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["query"] = request.url.query
            seen["api_key"] = request.headers.get("GROCY-API-KEY")
            seen["cf_id"] = request.headers.get("CF-Access-Client-Id")
            return httpx.Response(200, json={"version": "4.2"}, headers={"x-upstream": "1"})

        self.fake.respond("GET", "/api/system/info", handler)
        resp = self.get("/api/system/info?verbose=1")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json(), {"version": "4.2"})
        self.assertEqual(resp.headers["x-upstream"], "1")
        self.assertEqual(seen, {"query": b"verbose=1", "api_key": "grocy-key", "cf_id": "cf-id"})

    def test_upstream_status_is_forwarded(self):
        self.fake.respond("GET", "/api/objects/nope", lambda r: httpx.Response(400, json={"error_message": "x"}))
        resp = self.get("/api/objects/nope")
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json(), {"error_message": "x"})

    def test_redirect_is_an_auth_failure(self):
        self.fake.respond(
            "GET",
            "/api/system/info",
            lambda r: httpx.Response(302, headers={"location": "https://login.example/"}),
        )
        resp = self.get("/api/system/info")
        self.assertEqual(resp.status_code, 502)
        self.assertEqual(resp.json(), {"error": "upstream_auth_failed"})

    def test_html_is_an_auth_failure(self):
        self.fake.respond(
            "GET",
            "/api/system/info",
            lambda r: httpx.Response(200, content=b"<html>sign in</html>", headers={"content-type": "text/html"}),
        )
        resp = self.get("/api/system/info")
        self.assertEqual(resp.status_code, 502)
        self.assertNotIn("sign in", resp.text)

    def test_timeout_is_a_gateway_timeout(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        self.fake.respond("POST", "/api/stock/products/1/consume", handler)
        resp = self.post("/api/stock/products/1/consume", {"amount": 1})
        self.assertEqual(resp.status_code, 504)
        self.assertEqual(resp.json(), {"error": "upstream_timeout"})

    def test_post_body_is_forwarded(self):
        captured = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["body"] = request.content
            return httpx.Response(200, json={"ok": True})

        self.fake.respond("POST", "/api/stock/products/1/consume", handler)
        self.post("/api/stock/products/1/consume", {"amount": 1})
        self.assertEqual(json.loads(captured["body"]), {"amount": 1})


if __name__ == "__main__":
    unittest.main()
