#!/usr/bin/env python
"""
Create (or promote) the first PokeOlivos admin so someone can approve sign-ups.

Usage:
    python scripts/seed_admin.py

Environment variables:
    ADMIN_TRAINER_CODE   (required – 12 digits, spaces allowed)
    ADMIN_TRAINER_NAME   (required when the profile does not exist yet)
    ADMIN_EMAIL          (local backend only, for new profiles)
    ADMIN_PASSWORD       (local backend only, for new profiles)

With USE_SUPABASE on, the trainer must already have signed up; the script only
promotes their profile. With it off the local database gets the profile too.
"""

from __future__ import annotations

import os

from werkzeug.security import generate_password_hash

from app import app
from extensions import db
from models import ROLE_ADMIN, Profile
from olivos.backend import get_supabase_client, run_query
from olivos.errors import PokeOlivosError
from olivos.trainer_code import normalize_trainer_code


def seed_admin() -> str:
    code = normalize_trainer_code(os.environ.get("ADMIN_TRAINER_CODE"))
    client = get_supabase_client()
    if client:
        response = run_query(
            client.table("profiles").update({"role": ROLE_ADMIN, "active": True}).eq("trainer_code", code),
            "promoting the admin",
        )
        if not getattr(response, "data", None):
            raise SystemExit(f"No Supabase profile with trainer code {code}. Sign up first.")
        return f"Promoted {response.data[0].get('trainer_name')} to admin."

    profile = Profile.query.filter_by(trainer_code=code).first()
    if profile:
        profile.role = ROLE_ADMIN
        profile.active = True
        db.session.commit()
        return f"Promoted {profile.trainer_name} to admin."

    name = (os.environ.get("ADMIN_TRAINER_NAME") or "").strip()
    email = (os.environ.get("ADMIN_EMAIL") or "").strip()
    password = os.environ.get("ADMIN_PASSWORD") or ""
    if not (name and email and password):
        raise SystemExit("Set ADMIN_TRAINER_NAME, ADMIN_EMAIL and ADMIN_PASSWORD to create a new admin.")

    db.session.add(
        Profile(
            email=email,
            password_hash=generate_password_hash(password),
            trainer_name=name,
            trainer_code=code,
            role=ROLE_ADMIN,
            active=True,
        )
    )
    db.session.commit()
    return f"Created admin {name}."


if __name__ == "__main__":
    with app.app_context():
        try:
            print(f"✅ {seed_admin()}")
        except PokeOlivosError as exc:
            raise SystemExit(f"❌ {exc.message}") from exc
