#!/usr/bin/env python3
"""Stand-in for Supabase's ``/auth/v1/user`` endpoint during local runs.

Point ``QB_SUPABASE_URL`` at this server and use one of the tokens below as
the bearer token. Contractor ids and emails match ``db/seeds/local.sql``.
"""
from __future__ import annotations

import argparse
import json
from dataclasses import dataclass
from http import HTTPStatus
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer


@dataclass(frozen=True)
class MockUser:
    user_id: str
    role: str
    email: str
    full_name: str


MOCK_USERS: dict[str, MockUser] = {
    "admin-token": MockUser("11111111-1111-1111-1111-111111111111", "admin", "ops@example.ie", "Marketplace Ops"),
    "homeowner-token": MockUser("22222222-2222-2222-2222-222222222222", "homeowner", "aoife@example.ie", "Aoife Byrne"),
    "homeowner-2-token": MockUser("22222222-2222-2222-2222-222222222223", "homeowner", "ciaran@example.ie", "Ciaran Walsh"),
    "contractor-a-token": MockUser(
        "33333333-3333-3333-3333-333333333331", "contractor", "contractor-a@example.ie", "Dublin Domestic Assessor"
    ),
    "contractor-b-token": MockUser(
        "33333333-3333-3333-3333-333333333332", "contractor", "contractor-b@example.ie", "Nationwide Assessor"
    ),
}


def user_payload(token: str) -> dict[str, object] | None:
    user = MOCK_USERS.get(token)
    if user is None:
        return None
    # Roles live in app_metadata, which only the service role can write.
    return {
        "id": user.user_id,
        "email": user.email,
        "app_metadata": {"role": user.role},
        "user_metadata": {"full_name": user.full_name},
    }


def bearer_token(authorization: str) -> str | None:
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


class MockAuthHandler(BaseHTTPRequestHandler):
    server_version = "MockSupabaseAuth/1.0"

    def do_GET(self) -> None:  # noqa: N802 - stdlib handler signature
        if self.path == "/healthz":
            self._reply(HTTPStatus.OK, {"status": "ok"})
        elif self.path != "/auth/v1/user":
            self._reply(HTTPStatus.NOT_FOUND, {"detail": "not found"})
        else:
            token = bearer_token(self.headers.get("Authorization", ""))
            user = user_payload(token) if token else None
            if user is None:
                self._reply(HTTPStatus.UNAUTHORIZED, {"msg": "invalid JWT"})
            else:
                self._reply(HTTPStatus.OK, user)

    def log_message(self, format: str, *args: object) -> None:
        print("mock-auth:", format % args, flush=True)

    def _reply(self, status: HTTPStatus, payload: dict[str, object]) -> None:
        raw = json.dumps(payload).encode("utf-8")
        self.send_response(status.value)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(raw)))
        self.end_headers()
        self.wfile.write(raw)


def main() -> None:
    parser = argparse.ArgumentParser(description="Serve mock Supabase users for local quote lifecycle runs.")
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=54321)
    args = parser.parse_args()

    server = ThreadingHTTPServer((args.host, args.port), MockAuthHandler)
    for token, user in sorted(MOCK_USERS.items()):
        print(f"mock-auth token={token} role={user.role} user_id={user.user_id}", flush=True)
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        pass
    finally:
        server.server_close()


if __name__ == "__main__":
    main()
