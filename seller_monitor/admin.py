"""Admin HTTP server.

Small JSON API for managing tracked sellers, built on http.server:

  GET    /health                          liveness
  GET    /api/admin/webhooks              which webhooks are configured
  GET    /api/admin/sellers[?type=]       list sellers
  POST   /api/admin/sellers               add {storeName, ssn, type}
  DELETE /api/admin/sellers/<ssn>?type=   remove
  POST   /api/admin/check/<ssn>[?type=]   read-only crawl + diff probe
  GET    /api/seller-listings?storeName=&ssn=   crawl a storefront's new listings
  GET    /api/sold-items?storeName=&ssn=        crawl a storefront's recent sales
"""

from __future__ import annotations

import json
import logging
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Optional
from urllib.parse import parse_qs, unquote, urlparse

from . import config
from .models import MonitorKind
from .sellers import SellerManager

logger = logging.getLogger(__name__)

_SELLERS_PATH = "/api/admin/sellers"
_CHECK_PATH = "/api/admin/check/"
_FETCH_ROUTES = {
    "/api/seller-listings": (MonitorKind.LISTINGS, "Failed to fetch seller listings"),
    "/api/sold-items": (MonitorKind.SALES, "Failed to fetch sold items"),
}


class AdminHandler(BaseHTTPRequestHandler):
    """Routes admin requests to the server's SellerManager."""

    server: "_AdminHTTPServer"

    def log_message(self, format, *args):
        """Override to use Python logging instead of stderr."""
        logger.debug("%s - %s", self.address_string(), format % args)

    @property
    def manager(self) -> SellerManager:
        return self.server.manager

    def _parse(self):
        parsed = urlparse(self.path)
        params = {k: v[0] for k, v in parse_qs(parsed.query).items() if v}
        return parsed.path.rstrip("/") or "/", params

    def _read_json(self) -> dict:
        length = int(self.headers.get("Content-Length") or 0)
        if not length:
            return {}
        body = json.loads(self.rfile.read(length).decode("utf-8"))
        if not isinstance(body, dict):
            raise ValueError("JSON body must be an object")
        return body

    def _send_json(self, status: int, payload: dict) -> None:
        data = json.dumps(payload).encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(data)))
        self.end_headers()
        self.wfile.write(data)

    def _send_404(self) -> None:
        self._send_json(404, {"error": "Not Found", "message": f"Route {self.command} {self.path} not found"})

    def _dispatch(self, route) -> None:
        try:
            route()
        except Exception as e:
            logger.exception("Error handling %s %s", self.command, self.path)
            self._send_json(500, {"success": False, "error": "Internal Server Error", "message": str(e)})

    # ---- verbs ---------------------------------------------------------------

    def do_GET(self):
        self._dispatch(self._route_get)

    def do_POST(self):
        self._dispatch(self._route_post)

    def do_DELETE(self):
        self._dispatch(self._route_delete)

    def _route_get(self) -> None:
        path, params = self._parse()
        if path in ("/", "/health"):
            self._send_json(200, {"status": "healthy"})
        elif path == "/api/admin/webhooks":
            self._send_webhooks()
        elif path == _SELLERS_PATH:
            self._list_sellers(params.get("type"))
        elif path in _FETCH_ROUTES:
            self._fetch_items(path, params)
        else:
            self._send_404()

    def _route_post(self) -> None:
        path, params = self._parse()
        if path == _SELLERS_PATH:
            self._add_seller()
        elif path.startswith(_CHECK_PATH):
            self._check_seller(unquote(path[len(_CHECK_PATH):]), params.get("type"))
        else:
            self._send_404()

    def _route_delete(self) -> None:
        path, params = self._parse()
        prefix = _SELLERS_PATH + "/"
        if path.startswith(prefix):
            self._remove_seller(unquote(path[len(prefix):]), params.get("type"))
        else:
            self._send_404()

    # ---- handlers ------------------------------------------------------------

    def _send_webhooks(self) -> None:
        self._send_json(200, {
            "success": True,
            "webhookUrlListings": "***configured***" if self.server.listings_webhook else "not set",
            "webhookUrlSold": "***configured***" if self.server.sold_webhook else "not set",
            "note": "Configure webhooks using environment variables: WEBHOOK_URL_LISTINGS and WEBHOOK_URL_SOLD",
        })

    def _list_sellers(self, kind: Optional[str]) -> None:
        try:
            sellers = self.manager.list_sellers(kind)
        except ValueError as e:
            self._send_json(400, {"success": False, "error": str(e)})
            return
        self._send_json(200, {
            "success": True,
            "count": len(sellers),
            "sellers": [s.to_dict() for s in sellers],
        })

    def _add_seller(self) -> None:
        try:
            body = self._read_json()
        except ValueError as e:
            self._send_json(400, {"success": False, "error": f"Invalid JSON body: {e}"})
            return
        result = self.manager.add_seller(
            str(body.get("storeName") or ""),
            str(body.get("ssn") or ""),
            body.get("type"),
        )
        self._send_json(200 if result.success else 400, result.to_dict())

    def _remove_seller(self, ssn: str, kind: Optional[str]) -> None:
        if not ssn:
            self._send_json(400, {"success": False, "error": "Missing ssn parameter"})
            return
        try:
            MonitorKind.parse(kind)
        except ValueError:
            self._send_json(400, {
                "success": False,
                "error": "Missing or invalid query parameter: type (must be 'listings' or 'sold')",
            })
            return
        result = self.manager.remove_seller(ssn, kind)
        if result.success:
            status = 200
        else:
            status = 404 if result.not_found else 500
        self._send_json(status, result.to_dict())

    def _fetch_items(self, path: str, params: dict) -> None:
        kind, failure = _FETCH_ROUTES[path]
        store_name = (params.get("storeName") or "").strip()
        ssn = (params.get("ssn") or "").strip()
        if not store_name or not ssn:
            self._send_json(400, {
                "success": False,
                "error": "Both storeName and ssn are required query parameters and cannot be empty",
            })
            return
        result = self.manager.fetch_items(store_name, ssn, kind)
        if not result.success:
            self._send_json(500, {"success": False, "error": failure, "message": result.message})
            return
        self._send_json(200, {"success": True, **result.data})

    def _check_seller(self, ssn: str, kind: Optional[str]) -> None:
        try:
            result = self.manager.check_seller(ssn, kind or None)
        except ValueError as e:
            self._send_json(400, {"success": False, "error": str(e)})
            return
        if result.success:
            status = 200
        else:
            status = 404 if result.not_found else 500
        self._send_json(status, result.to_dict())


class _AdminHTTPServer(ThreadingHTTPServer):
    daemon_threads = True

    def __init__(self, address, manager: SellerManager, listings_webhook: str, sold_webhook: str):
        super().__init__(address, AdminHandler)
        self.manager = manager
        self.listings_webhook = listings_webhook
        self.sold_webhook = sold_webhook


class AdminServer:
    """Runs the admin API on a background thread."""

    def __init__(
        self,
        manager: SellerManager,
        host: str = config.ADMIN_HOST,
        port: int = config.ADMIN_PORT,
        *,
        listings_webhook: Optional[str] = None,
        sold_webhook: Optional[str] = None,
    ):
        self.manager = manager
        self.host = host
        self.port = port
        self.listings_webhook = config.WEBHOOK_URL_LISTINGS if listings_webhook is None else listings_webhook
        self.sold_webhook = config.WEBHOOK_URL_SOLD if sold_webhook is None else sold_webhook
        self.server: Optional[_AdminHTTPServer] = None
        self.server_thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self.server is not None

    def start(self) -> str:
        """Start the server and return its base URL ("" if it could not bind)."""
        if self.server is not None:
            return self.base_url
        try:
            self.server = _AdminHTTPServer(
                (self.host, self.port), self.manager, self.listings_webhook, self.sold_webhook
            )
        except OSError as e:
            logger.error("Failed to start admin server on %s:%s: %s", self.host, self.port, e)
            return ""
        # port 0 binds an ephemeral port
        self.port = self.server.server_address[1]
        self.server_thread = threading.Thread(target=self.server.serve_forever, name="admin-http", daemon=True)
        self.server_thread.start()
        logger.info("🚀 Admin server running on %s", self.base_url)
        return self.base_url

    @property
    def base_url(self) -> str:
        return f"http://{self.host}:{self.port}"

    def stop(self) -> None:
        if self.server is None:
            return
        self.server.shutdown()
        self.server.server_close()
        self.server = None
        logger.info("Admin server stopped")


__all__ = ["AdminServer", "AdminHandler"]
