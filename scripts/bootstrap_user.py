#!/usr/bin/env python3
"""Emit deterministic SQL that assigns a Supabase user a marketplace role.

Contractors additionally get a ``contractor_profiles`` row so they show up in
eligibility and digests straight away.
"""

from __future__ import annotations

import argparse

COUNTIES = (
    "Carlow",
    "Cavan",
    "Clare",
    "Cork",
    "Donegal",
    "Dublin",
    "Galway",
    "Kerry",
    "Kildare",
    "Kilkenny",
    "Laois",
    "Leitrim",
    "Limerick",
    "Longford",
    "Louth",
    "Mayo",
    "Meath",
    "Monaghan",
    "Offaly",
    "Roscommon",
    "Sligo",
    "Tipperary",
    "Waterford",
    "Westmeath",
    "Wexford",
    "Wicklow",
)


def _quote_sql(value: str) -> str:
    escaped = value.replace("'", "''")
    return f"'{escaped}'"


def _text_array(values: list[str]) -> str:
    if not values:
        return "'{}'::text[]"
    return "array[" + ", ".join(_quote_sql(value) for value in values) + "]::text[]"


def render_sql(
    *,
    role: str,
    user_id: str,
    email: str | None,
    actor: str,
    counties: list[str] | None = None,
    specialty: str = "domestic",
) -> str:
    role_value = _quote_sql(role)
    user_value = _quote_sql(user_id)
    statements = [
        "-- Supabase marketplace role bootstrap SQL",
        "-- Run this in the Supabase SQL editor (or equivalent privileged Postgres session).",
        "",
        "update auth.users",
        f"set raw_app_meta_data = coalesce(raw_app_meta_data, '{{}}'::jsonb) || jsonb_build_object('role', {role_value})",
        f"where id = {user_value}::uuid;",
    ]

    if role == "contractor":
        email_value = _quote_sql(email) if email else "null"
        statements.extend(
            [
                "",
                "insert into contractor_profiles (contractor_id, email, service_counties, specialty)",
                f"values ({user_value}, {email_value}, {_text_array(counties or [])}, {_quote_sql(specialty)}::contractor_specialty)",
                "on conflict (contractor_id) do update",
                "set email = excluded.email,",
                "    service_counties = excluded.service_counties,",
                "    specialty = excluded.specialty,",
                "    is_active = true,",
                "    updated_at = now();",
            ]
        )

    statements.extend(
        [
            "",
            "insert into provenance_events (entity_type, event_type, actor_type, actor_id, payload)",
            f"values ('user', 'role_bootstrap', 'human', {_quote_sql(actor)}, "
            f"jsonb_build_object('user_id', {user_value}, 'role', {role_value}));",
        ]
    )
    return "\n".join(statements) + "\n"


def main() -> None:
    parser = argparse.ArgumentParser(description="Emit SQL to bootstrap a Supabase marketplace role.")
    parser.add_argument(
        "--role",
        choices=["homeowner", "contractor", "admin"],
        default="admin",
        help="Role to assign in auth.users.raw_app_meta_data.role",
    )
    parser.add_argument("--user-id", required=True, help="Supabase auth.users id (UUID)")
    parser.add_argument("--email", help="Notification address for contractor profiles")
    parser.add_argument(
        "--county",
        action="append",
        choices=COUNTIES,
        dest="counties",
        help="Service county for contractors; repeat for several, omit for nationwide",
    )
    parser.add_argument("--specialty", choices=["domestic", "commercial", "both"], default="domestic")
    parser.add_argument(
        "--actor",
        default="system",
        help="Actor label recorded on the provenance event",
    )
    args = parser.parse_args()

    print(
        render_sql(
            role=args.role,
            user_id=args.user_id,
            email=args.email,
            actor=args.actor,
            counties=args.counties,
            specialty=args.specialty,
        )
    )


if __name__ == "__main__":
    main()
