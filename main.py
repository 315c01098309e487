"""
main.py
=======
Interactive demo of biometric registration, login and session reuse.

This script orchestrates:
- BiometricAuthenticator: ceremonies, credential index, encrypted session
- SoftwarePlatform: in-process authenticator standing in for the OS prompt

Demo options:
1. Register - create a credential and start a session
2. Log in - reuse the live session, or assert with a stored credential
3. Check session - show whether the session is still valid
4. Extend session - push the expiry out by N seconds
5. Save a note - encrypt a payload under the last credential id
6. Show stored data - credential ids, notes, authenticator contents
7. Log out - drop the session (credentials stay registered)

Configuration comes from BIOAUTH_* environment variables (see settings.py).
"""

import json
import logging

from authenticator import build_authenticator
from errors import CeremonyAborted
from settings import Settings
from software_platform import SoftwarePlatform


def main() -> None:
    """
    Main entry point: run the interactive demo loop.

    Step-by-step flow:
    1. Load settings from the environment and configure logging
    2. Build the authenticator around a software platform authenticator
    3. Present the menu until the user exits
    """
    settings = Settings.from_env()
    logging.basicConfig(level=settings.log_level)

    platform = SoftwarePlatform()
    auth = build_authenticator(settings, platform=platform)

    last_credential_id = None

    while True:
        print("\n=== BIOMETRIC AUTH DEMO ===")
        print("1) Register (create credential)")
        print("2) Log in")
        print("3) Check session")
        print("4) Extend session")
        print("5) Save a note for the last credential")
        print("6) Show stored data")
        print("7) Log out")
        print("0) Exit")

        choice = input("Choose: ").strip()

        if choice == "0":
            break

        if choice == "1":
            username = input("Username: ").strip() or None
            result = auth.register({"user": {"name": username}} if username else None, scope=username)
            if result.success:
                last_credential_id = result.credential_id
                print(f"[Platform] Credential created. credential_id={result.credential_id}")
                print(f"[Session] token={result.token}")
            else:
                print(f"[Platform] Registration failed: {result.error.code.value} {result.error.message}")

        elif choice == "2":
            username = input("Username: ").strip() or None
            try:
                record = auth.ensure_authenticated(scope=username)
            except CeremonyAborted as e:
                print(f"[Platform] Login failed: {e}")
                continue
            credential_id = record.metadata.get("credentialId")
            if credential_id:
                last_credential_id = credential_id
            print(f"[Session] Authenticated. token={record.token}")

        elif choice == "3":
            record = auth.sessions.current()
            if record is None:
                print("[Session] No valid session.")
            else:
                print(f"[Session] Valid until {record.expires_at} (epoch ms).")

        elif choice == "4":
            raw = input("Extend by how many seconds? ").strip()
            try:
                seconds = int(raw)
                ok = auth.sessions.extend(seconds * 1000)
            except ValueError:
                print("Please enter a positive whole number of seconds.")
                continue
            print("[Session] Extended." if ok else "[Session] No session to extend.")

        elif choice == "5":
            if last_credential_id is None or auth.blobs is None:
                print("Register or log in first (option 1 or 2).")
                continue
            note = input("Note: ")
            auth.blobs.store(last_credential_id, {"note": note})
            print("[Vault] Note stored encrypted.")

        elif choice == "6":
            print("\n--- CREDENTIAL IDS ---")
            index = {scope: auth.credentials.list(scope) for scope in auth.credentials.scopes()}
            print(json.dumps(index, indent=2))
            if auth.blobs is not None:
                print("\n--- NOTES ---")
                notes = {cid: auth.blobs.get(cid) for cid in auth.blobs.list_ids()}
                print(json.dumps(notes, indent=2))
            print("\n--- AUTHENTICATOR ---")
            print(json.dumps(platform.debug_dump(), indent=2))

        elif choice == "7":
            auth.logout()
            print("[Session] Logged out.")

        else:
            print("Invalid option.")


if __name__ == "__main__":
    main()
